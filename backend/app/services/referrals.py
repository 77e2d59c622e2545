"""
Reference Codes

Sign-up is by reference code. A code grants a role and names the user who
referred the newcomer; for students that referrer later becomes the
order's agent. The operator creates and renames codes.
"""
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging
import re

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cache import ReadThroughCache, cache as default_cache
from ..models.db_models import ReferenceCodeDB, UserDB, UserRole
from .actor import Actor, require_operator
from .errors import NotFound, PersistenceError, ValidationError
from .notifications import NotificationDispatcher
from .pricing import PricingAdminService
from .users import serialize_user


logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"[A-Z0-9_-]{4,32}")

# The operator role is never handed out by code
GRANTABLE_ROLES = frozenset({UserRole.STUDENT, UserRole.AGENT, UserRole.WORKER, UserRole.SUPER_WORKER})


def normalize_code(code: Optional[str]) -> str:
    normalized = (code or "").strip().upper()
    if not CODE_PATTERN.fullmatch(normalized):
        raise ValidationError("Reference codes are 4-32 letters, digits, '-' or '_'")
    return normalized


def serialize_code(row: ReferenceCodeDB, owner: Optional[UserDB] = None) -> Dict[str, Any]:
    return {
        "code": row.code,
        "role": row.role.value,
        "owner_id": row.owner_id,
        "owner_name": owner.name if owner else None,
        "owner_email": owner.email if owner else None,
    }


class ReferenceCodeService:
    """
    Usage:
        codes = ReferenceCodeService(db)
        codes.create_code(operator, "AGNT", UserRole.STUDENT, owner_id="ag-1")
        user = codes.register_user("agnt", name="New Student", email="new@example.com")
    """

    def __init__(self, db: Session, cache: Optional[ReadThroughCache] = None, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.cache = cache or default_cache
        self.dispatcher = dispatcher or NotificationDispatcher(db, self.cache)
        self.pricing_admin = PricingAdminService(db, self.cache)

    # =========================================================================
    # CODE MANAGEMENT
    # =========================================================================

    def list_codes(self, actor: Actor) -> List[Dict[str, Any]]:
        require_operator(actor, "view reference codes")
        rows = (
            self.db.query(ReferenceCodeDB, UserDB)
            .outerjoin(UserDB, ReferenceCodeDB.owner_id == UserDB.id)
            .order_by(ReferenceCodeDB.code)
            .all()
        )
        return [serialize_code(code, owner) for code, owner in rows]

    def create_code(self, actor: Actor, code: str, role, owner_id: Optional[str] = None) -> Dict[str, Any]:
        require_operator(actor, "create reference codes")
        code = normalize_code(code)
        role = self._grantable_role(role)

        owner = None
        if owner_id:
            owner = self.db.query(UserDB).filter(UserDB.id == owner_id).first()
            if owner is None:
                raise NotFound(f"User {owner_id} not found")
        if self.db.get(ReferenceCodeDB, code) is not None:
            raise ValidationError(f'Reference code "{code}" already exists.')

        row = ReferenceCodeDB(code=code, role=role, owner_id=owner.id if owner else None)
        self.db.add(row)
        self._commit(f"create reference code {code}")

        logger.info(f"Reference code {code} ({role.value}, owner {row.owner_id}) created by {actor.id}")
        return serialize_code(row, owner)

    def update_code(self, actor: Actor, old_code: str, new_code: str) -> Dict[str, Any]:
        """Rename a code. Users who already signed up keep their referrer."""
        require_operator(actor, "edit reference codes")
        old_code = (old_code or "").strip().upper()
        new_code = normalize_code(new_code)

        row = self.db.get(ReferenceCodeDB, old_code)
        if row is None:
            raise NotFound(f'Reference code "{old_code}" not found')
        if new_code == old_code:
            raise ValidationError("The new code is the same as the current one")
        if self.db.get(ReferenceCodeDB, new_code) is not None:
            raise ValidationError(f'Reference code "{new_code}" already exists.')

        row.code = new_code
        self._commit(f"rename reference code {old_code}")

        logger.info(f"Reference code {old_code} renamed to {new_code} by {actor.id}")
        owner = self.db.get(UserDB, row.owner_id) if row.owner_id else None
        return serialize_code(row, owner)

    # =========================================================================
    # SIGN-UP
    # =========================================================================

    def register_user(self, code: str, name: str, email: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a user from a reference code.

        The code decides the role and the referrer. Credentials stay with
        the identity provider; user_id is its subject id when it has one.
        The code owner and the operators are told about the new user.
        """
        row = self.db.get(ReferenceCodeDB, (code or "").strip().upper())
        if row is None:
            raise ValidationError("Invalid reference code.")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required")
        if self.db.query(UserDB).filter(UserDB.email == email).first() is not None:
            raise ValidationError("Email already in use.")
        if user_id and self.db.get(UserDB, user_id) is not None:
            raise ValidationError(f"User {user_id} already exists")

        user = UserDB(id=user_id or str(uuid4()), name=name, email=email, role=row.role, referred_by=row.owner_id)
        self.db.add(user)
        self.pricing_admin.ensure_role_defaults(user)
        self._commit(f"register {email}")

        variables = {"user_name": user.name, "user_role": user.role.value}
        recipients = [row.owner_id] if row.owner_id else []
        operators = self.db.query(UserDB.id).filter(UserDB.role == UserRole.SUPER_AGENT).all()
        recipients += [op.id for op in operators if op.id not in recipients]
        for recipient in recipients:
            self.dispatcher.notify("user_registration", variables, recipient)

        logger.info(f"User {user.id} registered as {user.role.value} with code {row.code}")
        return serialize_user(user)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _grantable_role(role) -> UserRole:
        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role '{role}'")
        if role not in GRANTABLE_ROLES:
            raise ValidationError(f"Reference codes cannot grant the {role.value} role")
        return role

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError()
