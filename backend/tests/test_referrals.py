"""
Tests for reference codes: operator management and sign-up.
"""
import pytest

from conftest import days_from_now
from app.models.db_models import NotificationDB, ReferenceCodeDB, SuperWorkerFeeDB, UserDB, UserRole
from app.services.actor import Actor
from app.services.errors import NotFound, PermissionDenied, ValidationError
from app.services.referrals import ReferenceCodeService


@pytest.fixture
def codes(db, fresh_cache, users):
    return ReferenceCodeService(db, fresh_cache)


def messages_for(db, user_id):
    return [n.message for n in db.query(NotificationDB).filter(NotificationDB.user_id == user_id).all()]


# =============================================================================
# TEST: CODE MANAGEMENT
# =============================================================================

class TestCodeManagement:

    def test_create_and_list(self, codes, actors):
        created = codes.create_code(actors["operator"], " agnt ", UserRole.STUDENT, owner_id="ag-1")

        assert created["code"] == "AGNT"
        assert codes.list_codes(actors["operator"]) == [{
            "code": "AGNT",
            "role": "student",
            "owner_id": "ag-1",
            "owner_name": "Arjun Agent",
            "owner_email": "agent@example.com",
        }]

    def test_code_without_owner(self, codes, actors):
        codes.create_code(actors["operator"], "OPEN", "worker")
        assert codes.list_codes(actors["operator"])[0]["owner_name"] is None

    def test_duplicate_rejected(self, codes, actors):
        codes.create_code(actors["operator"], "AGNT", UserRole.STUDENT, owner_id="ag-1")
        with pytest.raises(ValidationError):
            codes.create_code(actors["operator"], "agnt", UserRole.WORKER)

    def test_operator_role_is_never_granted(self, codes, actors):
        with pytest.raises(ValidationError):
            codes.create_code(actors["operator"], "BOSS", UserRole.SUPER_AGENT)

    @pytest.mark.parametrize("bad", ["", "AB", "HAS SPACE", "X" * 33])
    def test_code_format(self, codes, actors, bad):
        with pytest.raises(ValidationError):
            codes.create_code(actors["operator"], bad, UserRole.STUDENT)

    def test_unknown_owner(self, codes, actors):
        with pytest.raises(NotFound):
            codes.create_code(actors["operator"], "GHST", UserRole.STUDENT, owner_id="nobody")

    def test_operator_only(self, codes, actors):
        with pytest.raises(PermissionDenied):
            codes.create_code(actors["agent"], "AGNT", UserRole.STUDENT, owner_id="ag-1")
        with pytest.raises(PermissionDenied):
            codes.list_codes(actors["agent"])

    def test_rename(self, codes, actors, db):
        codes.create_code(actors["operator"], "AGNT", UserRole.STUDENT, owner_id="ag-1")

        renamed = codes.update_code(actors["operator"], "agnt", "arjun-2026")

        assert renamed["code"] == "ARJUN-2026"
        assert renamed["owner_name"] == "Arjun Agent"
        assert [row.code for row in db.query(ReferenceCodeDB).all()] == ["ARJUN-2026"]

    def test_rename_to_taken_or_missing_code(self, codes, actors):
        codes.create_code(actors["operator"], "AGNT", UserRole.STUDENT, owner_id="ag-1")
        codes.create_code(actors["operator"], "WRKR", UserRole.WORKER, owner_id="sw-1")

        with pytest.raises(ValidationError):
            codes.update_code(actors["operator"], "AGNT", "WRKR")
        with pytest.raises(NotFound):
            codes.update_code(actors["operator"], "NOPE", "FRESH")


# =============================================================================
# TEST: SIGN-UP
# =============================================================================

class TestRegistration:

    @pytest.fixture
    def agent_code(self, codes, actors):
        return codes.create_code(actors["operator"], "AGNT", UserRole.STUDENT, owner_id="ag-1")["code"]

    def test_code_sets_role_and_referrer(self, codes, agent_code):
        user = codes.register_user("agnt", "Nia New", "Nia@Example.com", user_id="st-9")

        assert user["id"] == "st-9"
        assert user["role"] == "student"
        assert user["referred_by"] == "ag-1"
        assert user["email"] == "nia@example.com"

    def test_referrer_becomes_order_agent(self, codes, agent_code, workflow):
        user = codes.register_user(agent_code, "Nia New", "nia@example.com")

        order = workflow.submit_order(Actor(id=user["id"], role=UserRole.STUDENT),
                                      word_count=500, deadline=days_from_now(10))["order"]

        assert order["agent_id"] == "ag-1"
        assert order["earnings"]["agent"] == 5.0

    def test_owner_and_operator_are_notified(self, codes, agent_code, db):
        codes.register_user(agent_code, "Nia New", "nia@example.com")

        expected = ["New user registration: Nia New (student) has joined the platform."]
        assert messages_for(db, "ag-1") == expected
        assert messages_for(db, "op-1") == expected

    def test_operator_owned_code_notifies_operator_once(self, codes, actors, db):
        codes.create_code(actors["operator"], "DIRECT", UserRole.STUDENT, owner_id="op-1")
        codes.register_user("DIRECT", "Nia New", "nia@example.com")
        assert len(messages_for(db, "op-1")) == 1

    def test_super_worker_code_creates_default_fee(self, codes, actors, db):
        codes.create_code(actors["operator"], "SENIOR", UserRole.SUPER_WORKER, owner_id="op-1")

        user = codes.register_user("SENIOR", "Sage Senior", "sage@example.com")

        fee = db.query(SuperWorkerFeeDB).filter(SuperWorkerFeeDB.super_worker_id == user["id"]).one()
        assert fee.fee_per_500 == 10.0

    def test_invalid_code(self, codes, db):
        with pytest.raises(ValidationError):
            codes.register_user("NOPE", "Nia New", "nia@example.com")
        assert db.query(UserDB).filter(UserDB.email == "nia@example.com").count() == 0

    def test_email_already_in_use(self, codes, agent_code):
        with pytest.raises(ValidationError):
            codes.register_user(agent_code, "Copy Cat", "ST1@example.com")

    def test_renamed_code_keeps_existing_referrals(self, codes, actors, agent_code, db):
        user = codes.register_user(agent_code, "Nia New", "nia@example.com")
        codes.update_code(actors["operator"], agent_code, "AGNT2")

        assert db.get(UserDB, user["id"]).referred_by == "ag-1"
        with pytest.raises(ValidationError):
            codes.register_user(agent_code, "Late Comer", "late@example.com")
