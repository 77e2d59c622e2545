"""
Notification Dispatcher

Renders templates into per-user notification rows, handles operator
broadcasts and the inbox operations (list, mark read).

The operator and super worker roles also have shared inboxes addressed by
a role pseudo-id; holders of the role see those rows alongside their own.
"""
from typing import Any, Dict, List, Mapping, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...cache import ReadThroughCache, cache as default_cache
from ...models.db_models import NotificationDB, NotificationSource, UserDB, UserRole
from ..actor import Actor, require_operator
from ..errors import NotFound, PersistenceError, ValidationError
from .templates import TemplateStore, render_template


logger = logging.getLogger(__name__)


ROLE_INBOXES = {
    UserRole.SUPER_AGENT: "super_agent_notifications",
    UserRole.SUPER_WORKER: "super_worker_notifications",
}


class UnknownTemplate(LookupError):
    """No template is registered under the requested key."""


def inbox_ids_for(actor: Actor) -> List[str]:
    """User ids whose rows the actor sees: their own plus their role inbox."""
    ids = [actor.id]
    role_inbox = ROLE_INBOXES.get(actor.role)
    if role_inbox:
        ids.append(role_inbox)
    return ids


def serialize_notification(row: NotificationDB) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "message": row.message,
        "is_read": bool(row.is_read),
        "order_id": row.order_id,
        "source": row.source.value if row.source else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(db)
        dispatcher.notify("order_in_progress", {"order_id": "AB12C"}, user_id, order_id="AB12C")
    """

    def __init__(self, db: Session, cache: Optional[ReadThroughCache] = None):
        self.db = db
        self.cache = cache or default_cache
        self.templates = TemplateStore(db, self.cache)

    # =========================================================================
    # TEMPLATED DELIVERY
    # =========================================================================

    def render(self, template_key: str, variables: Mapping[str, Any]) -> str:
        template = self.templates.get(template_key)
        if template is None:
            raise UnknownTemplate(template_key)
        return render_template(template.template, variables)

    def deliver(
        self,
        template_key: str,
        variables: Mapping[str, Any],
        target_user_id: str,
        order_id: Optional[str] = None,
    ) -> NotificationDB:
        """Add one rendered notification row to the session. Does not commit; raises on failure."""
        message = self.render(template_key, variables)
        row = NotificationDB(
            user_id=target_user_id,
            message=message,
            is_read=False,
            order_id=order_id,
            source=NotificationSource.SYSTEM,
        )
        self.db.add(row)
        return row

    def notify(
        self,
        template_key: str,
        variables: Mapping[str, Any],
        target_user_id: str,
        order_id: Optional[str] = None,
    ) -> Optional[NotificationDB]:
        """
        Render and store one notification in its own transaction.
        Failures are logged and swallowed.
        """
        try:
            row = self.deliver(template_key, variables, target_user_id, order_id)
            self.db.commit()
            return row
        except UnknownTemplate:
            logger.warning(f"Notification template '{template_key}' not found, nothing sent to {target_user_id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store '{template_key}' notification for {target_user_id}: {e}")
        return None

    # =========================================================================
    # BROADCAST
    # =========================================================================

    def broadcast(
        self,
        actor: Actor,
        message: str,
        target_role: Optional[UserRole] = None,
        target_user_id: Optional[str] = None,
    ) -> int:
        """
        Free-text message to every holder of a role or to one user.
        Exactly one target must be given. Returns the number of rows created.
        """
        require_operator(actor, "broadcast notifications")

        message = (message or "").strip()
        if not message:
            raise ValidationError("Broadcast message must not be empty")
        if (target_role is None) == (target_user_id is None):
            raise ValidationError("Specify exactly one of target_role or target_user_id")

        if target_user_id is not None:
            user = self.db.query(UserDB).filter(UserDB.id == target_user_id).first()
            if user is None:
                raise NotFound(f"User {target_user_id} not found")
            recipients = [user.id]
        else:
            role = UserRole(target_role)
            recipients = [row.id for row in self.db.query(UserDB.id).filter(UserDB.role == role).all()]

        for user_id in recipients:
            self.db.add(NotificationDB(
                user_id=user_id,
                message=message,
                is_read=False,
                source=NotificationSource.BROADCAST,
            ))
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Broadcast by {actor.id} failed: {e}")
            raise PersistenceError()

        logger.info(f"Broadcast by {actor.id} delivered to {len(recipients)} users")
        return len(recipients)

    # =========================================================================
    # INBOX
    # =========================================================================

    def list_for_user(self, actor: Actor, unread_only: bool = False) -> List[Dict[str, Any]]:
        query = self.db.query(NotificationDB).filter(NotificationDB.user_id.in_(inbox_ids_for(actor)))
        if unread_only:
            query = query.filter(NotificationDB.is_read.is_(False))
        rows = query.order_by(NotificationDB.created_at.desc(), NotificationDB.id.desc()).all()
        return [serialize_notification(row) for row in rows]

    def mark_read(self, actor: Actor, notification_id: int) -> Dict[str, Any]:
        row = (
            self.db.query(NotificationDB)
            .filter(NotificationDB.id == notification_id)
            .filter(NotificationDB.user_id.in_(inbox_ids_for(actor)))
            .first()
        )
        if row is None:
            raise NotFound(f"Notification {notification_id} not found")
        row.is_read = True
        self._commit("mark notification read")
        return serialize_notification(row)

    def mark_all_read(self, actor: Actor) -> int:
        """Mark the actor's own rows and their role inbox rows read. Returns count updated."""
        updated = (
            self.db.query(NotificationDB)
            .filter(NotificationDB.user_id.in_(inbox_ids_for(actor)))
            .filter(or_(NotificationDB.is_read.is_(False), NotificationDB.is_read.is_(None)))
            .update({NotificationDB.is_read: True}, synchronize_session=False)
        )
        self._commit("mark notifications read")
        return updated

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError()
