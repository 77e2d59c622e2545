#!/usr/bin/env python3
"""
Operator Seed Script
Creates the platform operator (super_agent) and prints a bearer token.

Usage:
    python -m scripts.seed_operator <email> <name>

Example:
    python -m scripts.seed_operator ops@example.com "Platform Operator"
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import UserDB, UserRole
from app.auth import create_access_token


def create_operator(email: str, name: str) -> bool:
    """Create (or promote) the operator user."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.email == email).first()

        if existing:
            if existing.role == UserRole.SUPER_AGENT:
                print(f"'{email}' is already the operator.")
            else:
                existing.role = UserRole.SUPER_AGENT
                db.commit()
                print(f"Upgraded existing user '{email}' to super_agent role.")
            user = existing
        else:
            user = UserDB(
                id=str(uuid4()),
                email=email,
                name=name,
                role=UserRole.SUPER_AGENT,
            )
            db.add(user)
            db.commit()
            print("Operator created successfully!")
            print(f"  Email: {email}")
            print(f"  Name: {name}")

        print(f"  Token: {create_access_token(user.id, UserRole.SUPER_AGENT.value)}")
        return True

    except Exception as e:
        print(f"Error creating operator: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    name = sys.argv[2]

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_operator(email, name)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
