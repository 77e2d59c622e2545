"""
Notification Templates

Built-in message templates plus operator overrides stored in
notification_templates. Placeholders are {variable} and are substituted
textually; unknown placeholders are left untouched.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging
import re

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...cache import CacheKeys, ReadThroughCache, cache as default_cache
from ...config import CacheTTL
from ...models.db_models import NotificationTemplateDB
from ..actor import Actor, require_operator
from ..errors import PersistenceError, ValidationError


logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class NotificationTemplate:
    key: str
    name: str
    description: str
    template: str
    variables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _t(key, name, description, template, variables):
    return NotificationTemplate(key=key, name=name, description=description, template=template, variables=variables)


# =============================================================================
# BUILT-IN DEFAULTS
# =============================================================================

DEFAULT_TEMPLATES: Dict[str, NotificationTemplate] = {t.key: t for t in [
    # Submission
    _t("new_order_submission", "New Homework Submission",
       "Sent to the operator when a student submits new homework",
       "New homework #{order_id} from {student_name} requires payment approval.",
       ["order_id", "student_name"]),
    _t("order_submitted", "Homework Submitted",
       "Sent to the student with payment details after submission",
       "Your homework has been submitted successfully! Reference Code: {reference_code}. "
       "Payment Amount: £{payment_amount}. Please transfer the payment to: {bank_details}. "
       "Your homework will begin processing once payment is confirmed.",
       ["reference_code", "payment_amount", "bank_details"]),
    _t("user_registration", "User Registration",
       "Sent when a new user registers with a reference code",
       "New user registration: {user_name} ({user_role}) has joined the platform.",
       ["user_name", "user_role"]),
    _t("role_change", "Role Change",
       "Sent when a user's role is changed",
       "An administrator has changed your role to {new_role}.",
       ["new_role"]),

    # Status updates
    _t("order_status_update", "Homework Status Update",
       "Generic status change message",
       'Homework #{order_id} status updated to "{status}".',
       ["order_id", "status"]),
    _t("order_in_progress", "Homework In Progress",
       "Sent when homework is marked as in progress",
       "Homework #{order_id} is now in progress.",
       ["order_id"]),
    _t("worker_assignment", "Worker Assignment",
       "Sent to the person assigned to homework",
       "You have been assigned homework #{order_id}.",
       ["order_id"]),
    _t("worker_draft_upload", "Worker Draft Upload",
       "Sent when draft files are uploaded",
       "Worker has uploaded draft files for homework #{order_id}. Ready for super worker review.",
       ["order_id"]),
    _t("final_payment_approval", "Final Payment Approval",
       "Sent to the operator when homework requires final payment approval",
       "Homework #{order_id} requires final payment approval.",
       ["order_id"]),
    _t("final_review", "Final Review",
       "Sent to the student while homework is reviewed for final approval",
       "Your homework #{order_id} is being reviewed for final approval.",
       ["order_id"]),
    _t("order_completed", "Homework Completed (Student)",
       "Sent to the student when homework is completed",
       "Your homework #{order_id} has been completed and final files are ready for download.",
       ["order_id"]),
    _t("order_completed_agent", "Homework Completed (Agent)",
       "Sent to the referring agent when homework is completed",
       "Homework #{order_id} has been completed successfully.",
       ["order_id"]),
    _t("order_completed_operator", "Homework Completed (Operator)",
       "Sent to the operator when homework is completed",
       "Homework #{order_id} has been completed and finalized.",
       ["order_id"]),
    _t("order_closed", "Homework Declined / Refunded",
       "Sent when homework is declined or refunded",
       "Homework #{order_id} has been {status}.",
       ["order_id", "status"]),

    # Change requests
    _t("change_request", "Student Change Request",
       "Sent when the student requests changes",
       "Student has requested changes for homework #{order_id}.",
       ["order_id"]),
    _t("fulfiller_change_request", "Super Worker Change Request",
       "Sent when the super worker proposes a word count or deadline change",
       "Super Worker requested change to {change_description} for homework #{order_id}.{price_info}",
       ["order_id", "change_description", "price_info"]),
]}


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Replace {name} placeholders present in variables."""
    def substitute(match):
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)
    return PLACEHOLDER.sub(substitute, template)


# =============================================================================
# TEMPLATE STORE
# =============================================================================

class TemplateStore:
    """Defaults overlaid with operator-customized rows, cached."""

    def __init__(self, db: Session, cache: Optional[ReadThroughCache] = None):
        self.db = db
        self.cache = cache or default_cache

    def get_templates(self) -> Dict[str, NotificationTemplate]:
        return self.cache.get_or_load(CacheKeys.notification_templates(), self._load, CacheTTL.LONG)

    def get(self, key: str) -> Optional[NotificationTemplate]:
        return self.get_templates().get(key)

    def _load(self) -> Dict[str, NotificationTemplate]:
        templates = dict(DEFAULT_TEMPLATES)
        for row in self.db.query(NotificationTemplateDB).all():
            default = DEFAULT_TEMPLATES.get(row.template_key)
            if default is None:
                logger.warning(f"Ignoring stored template with unknown key '{row.template_key}'")
                continue
            variables = row.variables if isinstance(row.variables, list) else default.variables
            templates[row.template_key] = NotificationTemplate(
                key=row.template_key,
                name=row.name,
                description=row.description or "",
                template=row.template,
                variables=variables,
            )
        return templates

    def save_templates(self, actor: Actor, templates: Mapping[str, Mapping[str, Any]]) -> Dict[str, NotificationTemplate]:
        """Replace the stored overrides with the given set."""
        require_operator(actor, "edit notification templates")

        unknown = sorted(set(templates) - set(DEFAULT_TEMPLATES))
        if unknown:
            raise ValidationError(f"Unknown template keys: {', '.join(unknown)}")

        rows = []
        for key, data in templates.items():
            text = (data.get("template") or "").strip()
            if not text:
                raise ValidationError(f"Template '{key}' must not be empty")
            default = DEFAULT_TEMPLATES[key]
            rows.append(NotificationTemplateDB(
                template_key=key,
                name=data.get("name") or default.name,
                description=data.get("description", default.description),
                template=text,
                variables=list(data.get("variables") or default.variables),
            ))

        try:
            self.db.query(NotificationTemplateDB).delete()
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save notification templates: {e}")
            raise PersistenceError()

        self.cache.delete(CacheKeys.notification_templates())
        logger.info(f"Notification templates updated by {actor.id} ({len(rows)} overrides)")
        return self.get_templates()
