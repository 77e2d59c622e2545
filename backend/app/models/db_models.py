"""
Homework Marketplace Engine - SQLAlchemy ORM Models
Relational models for orders, fees, pricing and notifications
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Boolean
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    """Persist enum values (not member names)."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=40,
    )


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Marketplace roles."""
    STUDENT = "student"
    AGENT = "agent"
    WORKER = "worker"
    SUPER_WORKER = "super_worker"
    SUPER_AGENT = "super_agent"  # platform operator


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PAYMENT_APPROVAL = "payment_approval"
    ASSIGNED_TO_SUPER_WORKER = "assigned_to_super_worker"
    ASSIGNED_TO_WORKER = "assigned_to_worker"
    IN_PROGRESS = "in_progress"
    WORKER_DRAFT = "worker_draft"
    REQUESTED_CHANGES = "requested_changes"
    FINAL_PAYMENT_APPROVAL = "final_payment_approval"
    WORD_COUNT_CHANGE = "word_count_change"
    DEADLINE_CHANGE = "deadline_change"
    DECLINED = "declined"
    REFUND = "refund"
    COMPLETED = "completed"


class FilePhase(str, Enum):
    """Which workflow phase an uploaded file belongs to."""
    STUDENT_ORIGINAL = "student_original"
    WORKER_DRAFT = "worker_draft"
    SUPER_WORKER_REVIEW = "super_worker_review"
    FINAL_APPROVED = "final_approved"


class ChangeRequestKind(str, Enum):
    """Discriminant for change-request records."""
    STUDENT_FEEDBACK = "student_feedback"
    WORD_COUNT_PROPOSAL = "word_count_proposal"
    DEADLINE_PROPOSAL = "deadline_proposal"


class NotificationSource(str, Enum):
    """Where a notification came from."""
    SYSTEM = "system"        # triggered automatically by the workflow
    BROADCAST = "broadcast"  # sent by the operator


class OutboxStatus(str, Enum):
    """Delivery state of a queued notification effect."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"  # no template for the key; never retried


# =============================================================================
# USERS
# =============================================================================

class UserDB(Base):
    """Marketplace participant. Credentials live with the identity provider."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(_enum(UserRole), nullable=False, default=UserRole.STUDENT, index=True)
    referred_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class ReferenceCodeDB(Base):
    """
    Sign-up code. Redeeming it grants role and sets referred_by to owner_id,
    which is what later attributes a student's orders to an agent.
    """
    __tablename__ = "reference_codes"

    code = Column(String(32), primary_key=True)  # stored upper-case
    role = Column(_enum(UserRole), nullable=False)
    owner_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# =============================================================================
# ORDERS
# =============================================================================

class OrderDB(Base):
    """
    A homework order moving through the workflow.

    price and earnings are always written together by the workflow service.
    version is bumped by the ORM on every UPDATE; a concurrent writer that
    read an older version fails with StaleDataError.
    """
    __tablename__ = "orders"

    id = Column(String(16), primary_key=True)  # short alphanumeric reference code
    student_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    agent_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)  # set once at creation
    worker_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
    super_worker_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)

    status = Column(_enum(OrderStatus), nullable=False, default=OrderStatus.PAYMENT_APPROVAL, index=True)

    module_name = Column(String(255), nullable=True)
    project_numbers = Column(JSON, nullable=True, default=list)  # e.g. ["A1", "A2"]
    word_count = Column(Integer, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)

    price = Column(Float, nullable=False)
    # {"total": x, "agent": y (omitted when zero), "super_worker": z, "profit": p}
    earnings = Column(JSON, nullable=False)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    files = relationship("OrderFileDB", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderFileDB.id")
    change_requests = relationship("ChangeRequestDB", back_populates="order", cascade="all, delete-orphan",
                                   order_by="ChangeRequestDB.id")


class OrderFileDB(Base):
    """
    Uploaded file reference. Content lives in external storage; only the
    name and locator are kept. Superseded uploads keep is_latest = False.
    """
    __tablename__ = "order_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(16), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String(500), nullable=False)
    locator = Column(String(1000), nullable=False, default="")
    phase = Column(_enum(FilePhase), nullable=False, default=FilePhase.STUDENT_ORIGINAL)
    is_latest = Column(Boolean, nullable=False, default=True)

    uploaded_by = Column(String(64), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("OrderDB", back_populates="files")


class ChangeRequestDB(Base):
    """
    Append-only change request attached to an order.
    Student feedback carries notes (and files); fulfiller proposals also
    carry the proposed word count / deadline.
    """
    __tablename__ = "change_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(16), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(_enum(ChangeRequestKind), nullable=False)
    notes = Column(Text, nullable=False)
    proposed_word_count = Column(Integer, nullable=True)
    proposed_deadline = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("OrderDB", back_populates="change_requests")
    files = relationship("ChangeRequestFileDB", back_populates="change_request", cascade="all, delete-orphan")


class ChangeRequestFileDB(Base):
    """File attached to a change request."""
    __tablename__ = "change_request_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    change_request_id = Column(Integer, ForeignKey("change_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(500), nullable=False)
    locator = Column(String(1000), nullable=False, default="")

    change_request = relationship("ChangeRequestDB", back_populates="files")


# =============================================================================
# PRICING & FEES
# =============================================================================

class PricingConfigDB(Base):
    """Global tier tables and default fees. Single row with id='main'."""
    __tablename__ = "pricing_config"

    id = Column(String(20), primary_key=True, default="main")
    # {"word_tiers": {...}, "deadline_tiers": {...}, "fees": {"agent": x, "super_worker": y}}
    config = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SuperWorkerFeeDB(Base):
    """Per super worker fee override (per 500 words)."""
    __tablename__ = "super_worker_fees"

    super_worker_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    fee_per_500 = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AgentFeeDB(Base):
    """Per agent commission override (per 500 words)."""
    __tablename__ = "agent_fees"

    agent_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    fee_per_500 = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AgentPricingDB(Base):
    """Per agent replacement of the word-count tier table."""
    __tablename__ = "agent_pricing"

    agent_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    word_tiers = Column(JSON, nullable=False)  # {"500": 20.0, ...}
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationDB(Base):
    """
    Delivered notification. user_id may be a role inbox pseudo-id
    (e.g. "super_agent_notifications"). Only is_read ever changes.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    order_id = Column(String(16), nullable=True, index=True)
    source = Column(_enum(NotificationSource), nullable=False, default=NotificationSource.SYSTEM)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class NotificationTemplateDB(Base):
    """Operator-customized template. Missing keys fall back to built-in defaults."""
    __tablename__ = "notification_templates"

    template_key = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    template = Column(Text, nullable=False)
    variables = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class OutboxEventDB(Base):
    """
    Notification effect queued inside a workflow transaction and delivered
    after commit. Failed deliveries stay visible for retry.
    """
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(16), nullable=True, index=True)
    user_id = Column(String(64), nullable=False)
    template_key = Column(String(64), nullable=False)
    variables = Column(JSON, nullable=False, default=dict)

    status = Column(_enum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
