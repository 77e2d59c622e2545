"""
Notification Outbox

Workflow operations enqueue outbox rows inside their own transaction, so
the intent to notify commits atomically with the state change. After the
commit the rows are delivered one at a time, each in its own transaction.
A failed delivery is recorded on the row and left for retry_failed();
it never reaches the workflow caller. A row whose template key is unknown
is marked skipped and is not retried.
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from ...config import NOTIFICATION_MAX_ATTEMPTS
from ...models.db_models import OutboxEventDB, OutboxStatus, utcnow
from .dispatcher import NotificationDispatcher, UnknownTemplate


logger = logging.getLogger(__name__)


class NotificationOutbox:
    """
    Usage:
        outbox = NotificationOutbox(db, dispatcher)
        outbox.enqueue(effects)      # before commit
        db.commit()
        outbox.flush()               # after commit
    """

    def __init__(self, db: Session, dispatcher: NotificationDispatcher, max_attempts: int = NOTIFICATION_MAX_ATTEMPTS):
        self.db = db
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self._queued: List[OutboxEventDB] = []

    def enqueue(self, notifications: Iterable[Any]) -> List[OutboxEventDB]:
        """
        Add outbox rows for (user_id, template_key, variables, order_id) items.
        Does not commit; the caller's transaction owns these rows.
        """
        rows = []
        for item in notifications:
            row = OutboxEventDB(
                order_id=item.order_id,
                user_id=item.user_id,
                template_key=item.template_key,
                variables=dict(item.variables),
                status=OutboxStatus.PENDING,
                attempts=0,
            )
            self.db.add(row)
            rows.append(row)
        self._queued.extend(rows)
        return rows

    def discard(self) -> None:
        """Forget queued rows after the enclosing transaction rolled back."""
        self._queued = []

    def flush(self) -> Dict[str, int]:
        """Deliver everything enqueued since the last flush. Never raises."""
        queued, self._queued = self._queued, []
        ids = []
        for row in queued:
            try:
                ids.append(row.id)
            except Exception as e:
                logger.error(f"Outbox row lost before delivery: {e}")
        return self._deliver_ids(ids)

    def retry_failed(self, limit: int = 100) -> Dict[str, int]:
        """Re-attempt pending and failed rows that are under the attempt limit."""
        try:
            ids = [
                row.id for row in (
                    self.db.query(OutboxEventDB.id)
                    .filter(OutboxEventDB.status.in_([OutboxStatus.PENDING, OutboxStatus.FAILED]))
                    .filter(OutboxEventDB.attempts < self.max_attempts)
                    .order_by(OutboxEventDB.id)
                    .limit(limit)
                    .all()
                )
            ]
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to load outbox rows for retry: {e}")
            return {"attempted": 0, "delivered": 0, "failed": 0}

        result = self._deliver_ids(ids)
        if ids:
            logger.info(f"Outbox retry: {result['delivered']} delivered, {result['failed']} failed")
        return result

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _deliver_ids(self, ids: List[int]) -> Dict[str, int]:
        delivered = failed = 0
        for event_id in ids:
            if self._deliver_one(event_id):
                delivered += 1
            else:
                failed += 1
        return {"attempted": len(ids), "delivered": delivered, "failed": failed}

    def _deliver_one(self, event_id: int) -> bool:
        try:
            event = self.db.query(OutboxEventDB).filter(OutboxEventDB.id == event_id).first()
            if event is None or event.status == OutboxStatus.DELIVERED:
                return event is not None
            self.dispatcher.deliver(event.template_key, event.variables or {}, event.user_id, event.order_id)
            event.status = OutboxStatus.DELIVERED
            event.attempts = (event.attempts or 0) + 1
            event.delivered_at = utcnow()
            event.last_error = None
            self.db.commit()
            return True
        except UnknownTemplate as e:
            self.db.rollback()
            logger.warning(f"Notification {event_id}: template '{e}' not found, nothing sent")
            self._record_failure(event_id, e, OutboxStatus.SKIPPED)
            return False
        except Exception as e:
            self.db.rollback()
            logger.error(f"Notification {event_id} delivery failed: {e}")
            self._record_failure(event_id, e)
            return False

    def _record_failure(self, event_id: int, error: Exception, status: OutboxStatus = OutboxStatus.FAILED) -> None:
        try:
            event = self.db.query(OutboxEventDB).filter(OutboxEventDB.id == event_id).first()
            if event is None:
                return
            event.status = status
            event.attempts = (event.attempts or 0) + 1
            event.last_error = f"{type(error).__name__}: {error}"[:1000]
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Could not record failure for notification {event_id}: {e}")


def outbox_summary(db: Session) -> Dict[str, int]:
    """Row counts per outbox status."""
    return {
        status.value: db.query(OutboxEventDB).filter(OutboxEventDB.status == status).count()
        for status in OutboxStatus
    }


__all__ = ["NotificationOutbox", "outbox_summary"]
