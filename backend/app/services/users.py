"""
User Administration

Operator-only role changes. Granting a fee-earning role creates that
person's default fee (and agent pricing) rows in the same transaction.
"""
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cache import ReadThroughCache, cache as default_cache, invalidate_order_cache
from ..models.db_models import UserDB, UserRole
from .actor import Actor, require_operator
from .errors import NotFound, PersistenceError, ValidationError
from .notifications import NotificationDispatcher
from .pricing import PricingAdminService


logger = logging.getLogger(__name__)


def serialize_user(user: UserDB) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "referred_by": user.referred_by,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


class UserAdminService:

    def __init__(self, db: Session, cache: Optional[ReadThroughCache] = None, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.cache = cache or default_cache
        self.dispatcher = dispatcher or NotificationDispatcher(db, self.cache)
        self.pricing_admin = PricingAdminService(db, self.cache)

    def list_users(self, role: Optional[UserRole] = None) -> List[Dict[str, Any]]:
        query = self.db.query(UserDB)
        if role is not None:
            query = query.filter(UserDB.role == UserRole(role))
        return [serialize_user(u) for u in query.order_by(UserDB.name).all()]

    def change_role(self, actor: Actor, user_id: str, new_role) -> Dict[str, Any]:
        require_operator(actor, "change user roles")
        try:
            new_role = UserRole(new_role)
        except ValueError:
            raise ValidationError(f"Unknown role '{new_role}'")

        user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if user is None:
            raise NotFound(f"User {user_id} not found")
        if user.role == new_role:
            raise ValidationError(f"User {user_id} is already a {new_role.value}")

        old_role = user.role
        user.role = new_role
        created = self.pricing_admin.ensure_role_defaults(user)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to change role of {user_id}: {e}")
            raise PersistenceError()

        # Role decides which orders a user sees
        invalidate_order_cache(self.cache)
        self.dispatcher.notify("role_change", {"new_role": new_role.value}, user_id)

        logger.info(f"User {user_id} role changed {old_role.value} -> {new_role.value} by {actor.id}"
                    + (f" (created {', '.join(created)})" if created else ""))
        return serialize_user(user)
