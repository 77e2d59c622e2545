"""
Migration: Backfill default fee and agent pricing rows.

Users who became super workers or agents before fee overrides existed have
no override rows. Create them from the stored global pricing configuration
(or the built-in defaults) so every fee earner can be edited individually.
"""
from sqlalchemy import create_engine, text
import json
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/homework_engine"
)

DEFAULT_WORD_TIERS = {str(words): float(words // 25) for words in range(500, 20001, 500)}
DEFAULT_FEES = {"agent": 5.0, "super_worker": 10.0}


def load_global_config(conn):
    row = conn.execute(text("SELECT config FROM pricing_config WHERE id = 'main'")).fetchone()
    if row is None:
        print("No stored pricing config, using built-in defaults")
        return DEFAULT_WORD_TIERS, DEFAULT_FEES
    config = row[0] if isinstance(row[0], dict) else json.loads(row[0])
    return config.get("word_tiers", DEFAULT_WORD_TIERS), {**DEFAULT_FEES, **config.get("fees", {})}


def run_migration():
    """Insert missing super_worker_fees, agent_fees and agent_pricing rows."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        word_tiers, fees = load_global_config(conn)

        result = conn.execute(text("""
            INSERT INTO super_worker_fees (super_worker_id, fee_per_500, created_at, updated_at)
            SELECT u.id, :fee, NOW(), NOW()
            FROM users u
            LEFT JOIN super_worker_fees f ON f.super_worker_id = u.id
            WHERE u.role = 'super_worker' AND f.super_worker_id IS NULL
        """), {"fee": fees["super_worker"]})
        print(f"Created {result.rowcount} super worker fee rows")

        result = conn.execute(text("""
            INSERT INTO agent_fees (agent_id, fee_per_500, created_at, updated_at)
            SELECT u.id, :fee, NOW(), NOW()
            FROM users u
            LEFT JOIN agent_fees f ON f.agent_id = u.id
            WHERE u.role = 'agent' AND f.agent_id IS NULL
        """), {"fee": fees["agent"]})
        print(f"Created {result.rowcount} agent fee rows")

        result = conn.execute(text("""
            INSERT INTO agent_pricing (agent_id, word_tiers, created_at, updated_at)
            SELECT u.id, CAST(:tiers AS JSON), NOW(), NOW()
            FROM users u
            LEFT JOIN agent_pricing p ON p.agent_id = u.id
            WHERE u.role = 'agent' AND p.agent_id IS NULL
        """), {"tiers": json.dumps(word_tiers)})
        print(f"Created {result.rowcount} agent pricing rows")

        conn.commit()

if __name__ == "__main__":
    run_migration()
