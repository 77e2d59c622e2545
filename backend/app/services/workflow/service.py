"""
Order Workflow Service

Main orchestration service for the order lifecycle.
Coordinates the state machine, pricing, the notification outbox and the
read-through cache.

TRANSACTION MODEL:
- Each operation loads the order FOR UPDATE, validates, mutates and
  enqueues outbox rows in one transaction
- Order.version is checked on write; a concurrent update is a conflict
- After commit: order-list cache entries are dropped, then queued
  notifications are delivered (failures are recorded, never raised)
- Any error before commit rolls back everything, outbox rows included
"""
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
import copy
import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...cache import CacheKeys, ReadThroughCache, cache as default_cache, invalidate_order_cache
from ...config import (
    CacheTTL, ORDER_ID_ALPHABET, ORDER_ID_LENGTH, ORDER_ID_MAX_ATTEMPTS, PAYMENT_BANK_DETAILS
)
from ...models.db_models import (
    ChangeRequestDB, ChangeRequestFileDB, ChangeRequestKind, FilePhase, OrderDB, OrderFileDB,
    OrderStatus, UserDB, UserRole, utcnow
)
from ..actor import Actor, require_operator
from ..errors import (
    ConcurrencyConflict, IllegalTransition, NotFound, PermissionDenied, PersistenceError,
    ValidationError, WorkflowError
)
from ..notifications import NotificationDispatcher, NotificationOutbox
from ..pricing import PricingService
from ..pricing.engine import as_utc, validate_word_count
from .effects import QueuedNotification, resolve_effects
from .serializers import serialize_order
from .state_machine import (
    CHANGE_REQUEST_SOURCES, PROPOSAL_SOURCES, PROPOSAL_STATUSES,
    WORKER_ASSIGNMENT_SOURCES, OrderStateMachine, state_machine
)


logger = logging.getLogger(__name__)

PROPOSAL_KINDS = (ChangeRequestKind.WORD_COUNT_PROPOSAL, ChangeRequestKind.DEADLINE_PROPOSAL)


def _require_notes(notes: Optional[str]) -> str:
    notes = (notes or "").strip()
    if not notes:
        raise ValidationError("Notes are required")
    return notes


def _clean_files(files: Optional[Iterable[Mapping[str, Any]]], required: bool = False) -> List[Dict[str, str]]:
    """Normalize {name, locator} pairs; file content is never inspected."""
    cleaned = []
    for item in files or []:
        name = (item.get("name") or "").strip()
        if not name:
            raise ValidationError("Every file needs a name")
        cleaned.append({"name": name, "locator": item.get("locator") or item.get("url") or ""})
    if required and not cleaned:
        raise ValidationError("At least one file is required")
    return cleaned


def _same_moment(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return a is b
    return as_utc(a) == as_utc(b)


# =============================================================================
# ORDER WORKFLOW SERVICE
# =============================================================================

class OrderWorkflowService:
    """
    Usage:
        workflow = OrderWorkflowService(db)
        result = workflow.submit_order(actor, word_count=1500, deadline=deadline)
        workflow.transition(operator, result["order"]["id"], OrderStatus.ASSIGNED_TO_SUPER_WORKER)
    """

    def __init__(
        self,
        db_session: Session,
        cache: Optional[ReadThroughCache] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.cache = cache or default_cache
        self.pricing = PricingService(db_session, self.cache)
        self.dispatcher = dispatcher or NotificationDispatcher(db_session, self.cache)
        self.outbox = NotificationOutbox(db_session, self.dispatcher)
        self.state_machine: OrderStateMachine = state_machine
        self.clock = clock or utcnow

    # =========================================================================
    # TRANSACTION HELPERS
    # =========================================================================

    @contextmanager
    def _transaction(self, action: str):
        try:
            yield
            self.db.commit()
        except WorkflowError:
            self.db.rollback()
            self.outbox.discard()
            raise
        except StaleDataError:
            self.db.rollback()
            self.outbox.discard()
            logger.warning(f"Concurrent update detected during {action}")
            raise ConcurrencyConflict("The order was changed by someone else. Reload and try again.")
        except SQLAlchemyError as e:
            self.db.rollback()
            self.outbox.discard()
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError()
        except Exception:
            self.db.rollback()
            self.outbox.discard()
            logger.exception(f"Unexpected error during {action}")
            raise

        invalidate_order_cache(self.cache)
        self.outbox.flush()

    def _load_for_update(self, order_id: str, expected_version: Optional[int] = None) -> OrderDB:
        order = self.db.query(OrderDB).filter(OrderDB.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if expected_version is not None and order.version != expected_version:
            raise ConcurrencyConflict(
                f"Order {order_id} is at version {order.version}, expected {expected_version}",
                current_version=order.version,
            )
        return order

    def _get_user(self, user_id: str) -> UserDB:
        user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def _require_user_with_role(self, user_id: str, role: UserRole) -> UserDB:
        user = self._get_user(user_id)
        if user.role != role:
            raise ValidationError(f"User {user_id} is not a {role.value}")
        return user

    def _operator_ids(self) -> List[str]:
        return [row.id for row in self.db.query(UserDB.id).filter(UserDB.role == UserRole.SUPER_AGENT).all()]

    def _queue_status_effects(self, order: OrderDB, status: OrderStatus, variables: Optional[Mapping] = None) -> None:
        self.outbox.enqueue(resolve_effects(order, status, self._operator_ids(), variables))

    def _now(self) -> datetime:
        return self.clock()

    # =========================================================================
    # VISIBILITY
    # =========================================================================

    @staticmethod
    def _is_involved(actor: Actor, order: OrderDB) -> bool:
        if actor.is_operator:
            return True
        owner = {
            UserRole.STUDENT: order.student_id,
            UserRole.AGENT: order.agent_id,
            UserRole.SUPER_WORKER: order.super_worker_id,
            UserRole.WORKER: order.worker_id,
        }.get(actor.role)
        return owner is not None and owner == actor.id

    def _require_involved(self, actor: Actor, order: OrderDB) -> None:
        # Orders the caller cannot see are reported as missing
        if not self._is_involved(actor, order):
            raise NotFound(f"Order {order.id} not found")

    @staticmethod
    def _visibility_filter(query, actor: Actor):
        if actor.is_operator:
            return query
        column = {
            UserRole.STUDENT: OrderDB.student_id,
            UserRole.AGENT: OrderDB.agent_id,
            UserRole.SUPER_WORKER: OrderDB.super_worker_id,
            UserRole.WORKER: OrderDB.worker_id,
        }[actor.role]
        return query.filter(column == actor.id)

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit_order(
        self,
        actor: Actor,
        word_count: int,
        deadline: datetime,
        module_name: Optional[str] = None,
        project_numbers: Optional[List[str]] = None,
        notes: Optional[str] = None,
        files: Optional[Iterable[Mapping[str, Any]]] = None,
        super_worker_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create an order for the calling student.

        The referring agent is fixed here and never changes. Price and
        earnings are computed together; the order starts in payment_approval.

        Returns:
            {"order": ..., "payment_message": ...}
        """
        if actor.role != UserRole.STUDENT:
            raise PermissionDenied("Only students can submit orders")
        validate_word_count(word_count)
        if deadline is None:
            raise ValidationError("deadline is required")
        cleaned_files = _clean_files(files)

        with self._transaction("submit order"):
            student = self._get_user(actor.id)
            agent_id = self._referring_agent_id(student)
            if super_worker_id:
                self._require_user_with_role(super_worker_id, UserRole.SUPER_WORKER)

            price, earnings = self.pricing.price_and_split(
                word_count, deadline, agent_id, super_worker_id, now=self._now()
            )

            order = OrderDB(
                id=self._new_order_id(),
                student_id=student.id,
                agent_id=agent_id,
                super_worker_id=super_worker_id or None,
                status=OrderStatus.PAYMENT_APPROVAL,
                module_name=module_name,
                project_numbers=list(project_numbers or []),
                word_count=word_count,
                deadline=deadline,
                notes=notes,
                price=price,
                earnings=earnings.to_dict(),
            )
            for item in cleaned_files:
                order.files.append(OrderFileDB(
                    file_name=item["name"],
                    locator=item["locator"],
                    phase=FilePhase.STUDENT_ORIGINAL,
                    is_latest=True,
                    uploaded_by=student.id,
                ))
            self.db.add(order)

            submitted_vars = {
                "reference_code": order.id,
                "payment_amount": f"{price:.2f}",
                "bank_details": PAYMENT_BANK_DETAILS,
            }
            queued = [
                QueuedNotification(user_id=op_id, template_key="new_order_submission", order_id=order.id,
                                   variables={"order_id": order.id, "student_name": student.name})
                for op_id in self._operator_ids()
            ]
            queued.append(QueuedNotification(user_id=student.id, template_key="order_submitted",
                                             order_id=order.id, variables=submitted_vars))
            if order.super_worker_id:
                queued.append(QueuedNotification(user_id=order.super_worker_id, template_key="worker_assignment",
                                                 order_id=order.id, variables={"order_id": order.id}))
            self.outbox.enqueue(queued)

        logger.info(f"Order {order.id} submitted by {actor.id} (price {price:.2f}, agent {agent_id})")
        return {
            "order": serialize_order(order),
            "payment_message": self.dispatcher.render("order_submitted", submitted_vars),
        }

    def _referring_agent_id(self, student: UserDB) -> Optional[str]:
        """The student's referrer, when that referrer is an agent or the operator."""
        if not student.referred_by:
            return None
        referrer = self.db.query(UserDB).filter(UserDB.id == student.referred_by).first()
        if referrer is None or referrer.role not in (UserRole.AGENT, UserRole.SUPER_AGENT):
            return None
        return referrer.id

    def _new_order_id(self) -> str:
        for _ in range(ORDER_ID_MAX_ATTEMPTS):
            candidate = "".join(secrets.choice(ORDER_ID_ALPHABET) for _ in range(ORDER_ID_LENGTH))
            if self.db.get(OrderDB, candidate) is None:
                return candidate
        logger.error(f"Could not find a free order id after {ORDER_ID_MAX_ATTEMPTS} attempts")
        raise PersistenceError("Could not allocate an order reference. Please try again.")

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def transition(
        self,
        actor: Actor,
        order_id: str,
        to_status,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Move an order to another status, subject to the caller's role.

        A student leaving a proposal status for in_progress rejects the
        proposal; use resolve_change to approve it.
        """
        target = self._parse_status(to_status)

        with self._transaction("change order status"):
            order = self._load_for_update(order_id, expected_version)
            self._require_involved(actor, order)
            current = order.status

            if not actor.is_operator:
                if target in (OrderStatus.REQUESTED_CHANGES, *PROPOSAL_STATUSES):
                    raise IllegalTransition(current, target, actor.role,
                                            reason=f"Use the change request operation to move an order to {target.value}")

            allowed, reason = self.state_machine.can_transition(actor.role, current, target)
            if not allowed:
                raise IllegalTransition(current, target, actor.role, reason=reason)

            if (actor.role == UserRole.SUPER_WORKER
                    and current == OrderStatus.WORKER_DRAFT
                    and target == OrderStatus.FINAL_PAYMENT_APPROVAL):
                self._approve_drafts(order, actor)

            order.status = target
            self._queue_status_effects(order, target)

        logger.info(f"Order {order_id}: {current.value} -> {target.value} by {actor.role.value} {actor.id}")
        return serialize_order(order)

    def _approve_drafts(self, order: OrderDB, actor: Actor) -> None:
        """Drafts must exist; without reviewed files they are promoted to final files."""
        drafts = [f for f in order.files if f.phase == FilePhase.WORKER_DRAFT and f.is_latest]
        if not drafts:
            raise ValidationError("No draft files to approve")
        reviewed = [f for f in order.files if f.phase == FilePhase.SUPER_WORKER_REVIEW and f.is_latest]
        if reviewed:
            return
        self._supersede(order, FilePhase.FINAL_APPROVED)
        for draft in drafts:
            order.files.append(OrderFileDB(
                file_name=draft.file_name,
                locator=draft.locator,
                phase=FilePhase.FINAL_APPROVED,
                is_latest=True,
                uploaded_by=actor.id,
            ))
        logger.info(f"Order {order.id}: promoted {len(drafts)} draft files to final")

    @staticmethod
    def _parse_status(value) -> OrderStatus:
        try:
            return OrderStatus(value)
        except ValueError:
            raise ValidationError(f"Unknown status '{value}'")

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    def assign_super_worker(
        self,
        actor: Actor,
        order_id: str,
        super_worker_id: str,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Operator hands the order to a super worker; earnings follow that person's fee."""
        require_operator(actor, "assign super workers")

        with self._transaction("assign super worker"):
            order = self._load_for_update(order_id, expected_version)
            if self.state_machine.is_terminal(order.status):
                raise IllegalTransition(order.status, OrderStatus.ASSIGNED_TO_SUPER_WORKER, actor.role)
            self._require_user_with_role(super_worker_id, UserRole.SUPER_WORKER)

            order.super_worker_id = super_worker_id
            order.earnings = self.pricing.split(order.price, order.word_count, order.agent_id, super_worker_id).to_dict()
            order.status = OrderStatus.ASSIGNED_TO_SUPER_WORKER
            self._queue_status_effects(order, OrderStatus.ASSIGNED_TO_SUPER_WORKER)

        logger.info(f"Order {order_id} assigned to super worker {super_worker_id}")
        return serialize_order(order)

    def assign_worker(
        self,
        actor: Actor,
        order_id: str,
        worker_id: str,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Operator or the assigned super worker delegates the order to a worker."""
        if actor.role not in (UserRole.SUPER_AGENT, UserRole.SUPER_WORKER):
            raise PermissionDenied("Only the operator or a super worker can assign workers")

        with self._transaction("assign worker"):
            order = self._load_for_update(order_id, expected_version)
            self._require_involved(actor, order)
            if self.state_machine.is_terminal(order.status):
                raise IllegalTransition(order.status, OrderStatus.ASSIGNED_TO_WORKER, actor.role)
            if not actor.is_operator and order.status not in WORKER_ASSIGNMENT_SOURCES:
                raise IllegalTransition(order.status, OrderStatus.ASSIGNED_TO_WORKER, actor.role)
            self._require_user_with_role(worker_id, UserRole.WORKER)

            order.worker_id = worker_id
            order.status = OrderStatus.ASSIGNED_TO_WORKER
            self._queue_status_effects(order, OrderStatus.ASSIGNED_TO_WORKER)

        logger.info(f"Order {order_id} assigned to worker {worker_id} by {actor.id}")
        return serialize_order(order)

    # =========================================================================
    # CHANGE REQUESTS
    # =========================================================================

    def request_changes(
        self,
        actor: Actor,
        order_id: str,
        notes: str,
        files: Optional[Iterable[Mapping[str, Any]]] = None,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Student asks for changes; notes are required."""
        if actor.role != UserRole.STUDENT:
            raise PermissionDenied("Only the student can request changes")
        notes = _require_notes(notes)
        cleaned_files = _clean_files(files)

        with self._transaction("request changes"):
            order = self._load_for_update(order_id, expected_version)
            self._require_involved(actor, order)
            if order.status not in CHANGE_REQUEST_SOURCES:
                raise IllegalTransition(order.status, OrderStatus.REQUESTED_CHANGES, actor.role)

            request = ChangeRequestDB(kind=ChangeRequestKind.STUDENT_FEEDBACK, notes=notes, created_by=actor.id)
            for item in cleaned_files:
                request.files.append(ChangeRequestFileDB(file_name=item["name"], locator=item["locator"]))
            order.change_requests.append(request)

            previous = order.status
            order.status = OrderStatus.REQUESTED_CHANGES
            self._queue_status_effects(order, OrderStatus.REQUESTED_CHANGES)

        logger.info(f"Order {order_id}: {previous.value} -> requested_changes by student {actor.id}")
        return serialize_order(order)

    def propose_change(
        self,
        actor: Actor,
        order_id: str,
        notes: str,
        new_word_count: Optional[int] = None,
        new_deadline: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Assigned super worker proposes a new word count and/or deadline.

        The proposal is recorded and the student is asked to decide; price
        and earnings are untouched until the student approves.
        """
        if actor.role != UserRole.SUPER_WORKER:
            raise PermissionDenied("Only the assigned super worker can propose changes")
        notes = _require_notes(notes)
        if new_word_count is not None:
            validate_word_count(new_word_count)

        with self._transaction("propose change"):
            order = self._load_for_update(order_id, expected_version)
            self._require_involved(actor, order)

            word_count_changed = new_word_count is not None and new_word_count != order.word_count
            deadline_changed = new_deadline is not None and not _same_moment(new_deadline, order.deadline)
            if not (word_count_changed or deadline_changed):
                raise ValidationError("Proposal must change the word count or the deadline")

            target = OrderStatus.WORD_COUNT_CHANGE if word_count_changed else OrderStatus.DEADLINE_CHANGE
            if order.status not in PROPOSAL_SOURCES:
                raise IllegalTransition(order.status, target, actor.role)

            proposed_words = new_word_count if word_count_changed else order.word_count
            proposed_deadline = new_deadline if deadline_changed else order.deadline
            new_price = self.pricing.quote(proposed_words, proposed_deadline, order.agent_id, now=self._now())

            order.change_requests.append(ChangeRequestDB(
                kind=ChangeRequestKind.WORD_COUNT_PROPOSAL if word_count_changed else ChangeRequestKind.DEADLINE_PROPOSAL,
                notes=notes,
                proposed_word_count=new_word_count if word_count_changed else None,
                proposed_deadline=new_deadline if deadline_changed else None,
                created_by=actor.id,
            ))
            order.status = target

            variables = {
                "change_description": self._describe_change(
                    new_word_count if word_count_changed else None,
                    new_deadline if deadline_changed else None,
                ),
                "price_info": self._describe_price_change(order.price, new_price),
            }
            queued = []
            for item in resolve_effects(order, target, self._operator_ids(), variables):
                if item.user_id == order.student_id:
                    student_vars = dict(item.variables, price_info=f"{variables['price_info']} Please approve or decline.")
                    item = replace(item, variables=student_vars)
                queued.append(item)
            self.outbox.enqueue(queued)

        logger.info(f"Order {order_id}: super worker {actor.id} proposed {target.value}")
        return serialize_order(order)

    @staticmethod
    def _describe_change(new_word_count: Optional[int], new_deadline: Optional[datetime]) -> str:
        parts = []
        if new_word_count is not None:
            parts.append(f"word count to {new_word_count}")
        if new_deadline is not None:
            parts.append(f"deadline to {as_utc(new_deadline).date().isoformat()}")
        return " and ".join(parts)

    @staticmethod
    def _describe_price_change(old_price: float, new_price: float) -> str:
        difference = round(new_price - (old_price or 0), 2)
        if difference == 0:
            return ""
        direction = "increased" if difference > 0 else "decreased"
        return f" Price {direction} by £{abs(difference):.2f}."

    def resolve_change(
        self,
        actor: Actor,
        order_id: str,
        approve: bool,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Student approves or rejects the pending proposal.

        Approval applies the proposed values and recomputes price and
        earnings; both outcomes return the order to in_progress.
        """
        if actor.role != UserRole.STUDENT:
            raise PermissionDenied("Only the student can resolve a proposed change")

        with self._transaction("resolve change"):
            order = self._load_for_update(order_id, expected_version)
            self._require_involved(actor, order)
            if order.status not in PROPOSAL_STATUSES:
                raise IllegalTransition(order.status, OrderStatus.IN_PROGRESS, actor.role,
                                        reason="There is no pending change proposal on this order")

            proposal = next((cr for cr in reversed(order.change_requests) if cr.kind in PROPOSAL_KINDS), None)
            if proposal is None:
                raise NotFound(f"No change proposal recorded for order {order_id}")

            previous = order.status
            if approve:
                if proposal.proposed_word_count is not None:
                    order.word_count = proposal.proposed_word_count
                if proposal.proposed_deadline is not None:
                    order.deadline = proposal.proposed_deadline
                price, earnings = self.pricing.price_and_split(
                    order.word_count, order.deadline, order.agent_id, order.super_worker_id, now=self._now()
                )
                order.price = price
                order.earnings = earnings.to_dict()

            order.status = OrderStatus.IN_PROGRESS
            self._queue_status_effects(order, OrderStatus.IN_PROGRESS)

        outcome = "approved" if approve else "rejected"
        logger.info(f"Order {order_id}: {previous.value} {outcome} by student {actor.id}")
        return serialize_order(order)

    # =========================================================================
    # FILE UPLOADS
    # =========================================================================

    def upload_phase_files(
        self,
        actor: Actor,
        order_id: str,
        phase,
        files: Iterable[Mapping[str, Any]],
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Attach draft, reviewed or final files and force the matching status.
        Earlier files of the same phase stay on record but are no longer latest.
        """
        try:
            phase = FilePhase(phase)
        except ValueError:
            raise ValidationError(f"Unknown file phase '{phase}'")
        cleaned_files = _clean_files(files, required=True)

        with self._transaction("upload files"):
            order = self._load_for_update(order_id, expected_version)
            self._require_involved(actor, order)

            target = self.state_machine.forced_status(phase)
            allowed, reason = self.state_machine.can_upload(actor.role, order.status, phase)
            if not allowed:
                raise IllegalTransition(order.status, target or order.status, actor.role, reason=reason)

            self._supersede(order, phase)
            for item in cleaned_files:
                order.files.append(OrderFileDB(
                    file_name=item["name"],
                    locator=item["locator"],
                    phase=phase,
                    is_latest=True,
                    uploaded_by=actor.id,
                ))

            previous = order.status
            order.status = target
            self._queue_status_effects(order, target)

        logger.info(f"Order {order_id}: {len(cleaned_files)} {phase.value} files by {actor.id}, "
                    f"{previous.value} -> {target.value}")
        return serialize_order(order)

    @staticmethod
    def _supersede(order: OrderDB, phase: FilePhase) -> None:
        for existing in order.files:
            if existing.phase == phase and existing.is_latest:
                existing.is_latest = False

    # =========================================================================
    # READS
    # =========================================================================

    def list_orders(self, actor: Actor) -> List[Dict[str, Any]]:
        """Orders visible to the caller, latest deadline first (cached)."""
        key = CacheKeys.user_orders(actor.id, actor.role.value)
        orders = self.cache.get_or_load(key, lambda: self._load_orders(actor), CacheTTL.MEDIUM)
        # Callers get their own copy; the cached entry is shared
        return copy.deepcopy(orders)

    def _load_orders(self, actor: Actor) -> List[Dict[str, Any]]:
        query = self._visibility_filter(self.db.query(OrderDB), actor)
        orders = query.order_by(OrderDB.deadline.desc()).all()
        return [serialize_order(order) for order in orders]

    def get_order(self, actor: Actor, order_id: str) -> Dict[str, Any]:
        order = self.db.query(OrderDB).filter(OrderDB.id == order_id).first()
        if order is None or not self._is_involved(actor, order):
            raise NotFound(f"Order {order_id} not found")
        return serialize_order(order)

    def calculate_price(self, word_count: int, deadline: datetime, agent_id: Optional[str] = None) -> float:
        """Quote for a prospective order."""
        return self.pricing.quote(word_count, deadline, agent_id=agent_id, now=self._now())
