"""
Order State Machine

OrderStatus is the source of truth.
Main path:
    PAYMENT_APPROVAL → ASSIGNED_TO_SUPER_WORKER → ASSIGNED_TO_WORKER → IN_PROGRESS
    → WORKER_DRAFT → FINAL_PAYMENT_APPROVAL → COMPLETED
Side branches:
    REQUESTED_CHANGES (student) → IN_PROGRESS
    WORD_COUNT_CHANGE | DEADLINE_CHANGE (super worker) → IN_PROGRESS | DECLINED
    DECLINED, REFUND (operator)

Legality is per role. The operator (super_agent) may set any status;
everyone else is limited to the pairs in ROLE_TRANSITIONS. File uploads
force a status and are gated by UPLOAD_RULES.
"""
from typing import Dict, FrozenSet, Optional, Tuple

from ...models.db_models import FilePhase, OrderStatus, UserRole


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

STATE_CONFIG: Dict[OrderStatus, Dict] = {
    OrderStatus.PAYMENT_APPROVAL: {
        "description": "Submitted, waiting for the operator to confirm payment",
        "terminal": False,
    },
    OrderStatus.ASSIGNED_TO_SUPER_WORKER: {
        "description": "Paid and handed to a super worker",
        "terminal": False,
    },
    OrderStatus.ASSIGNED_TO_WORKER: {
        "description": "Super worker delegated the order to a worker",
        "terminal": False,
    },
    OrderStatus.IN_PROGRESS: {
        "description": "Work under way",
        "terminal": False,
    },
    OrderStatus.WORKER_DRAFT: {
        "description": "Draft uploaded, awaiting super worker review",
        "terminal": False,
    },
    OrderStatus.REQUESTED_CHANGES: {
        "description": "Student asked for changes",
        "terminal": False,
    },
    OrderStatus.WORD_COUNT_CHANGE: {
        "description": "Super worker proposed a new word count, awaiting the student",
        "terminal": False,
    },
    OrderStatus.DEADLINE_CHANGE: {
        "description": "Super worker proposed a new deadline, awaiting the student",
        "terminal": False,
    },
    OrderStatus.FINAL_PAYMENT_APPROVAL: {
        "description": "Reviewed files ready, awaiting final operator approval",
        "terminal": False,
    },
    OrderStatus.COMPLETED: {
        "description": "Final files delivered",
        "terminal": True,
    },
    OrderStatus.DECLINED: {
        "description": "Declined by the operator or the student",
        "terminal": True,
    },
    OrderStatus.REFUND: {
        "description": "Refunded by the operator",
        "terminal": True,
    },
}

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(s for s, c in STATE_CONFIG.items() if c["terminal"])

# No further work of any kind once closed
CLOSED_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.DECLINED, OrderStatus.REFUND})

PROPOSAL_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.WORD_COUNT_CHANGE, OrderStatus.DEADLINE_CHANGE})


# =============================================================================
# ROLE ADJACENCY
# =============================================================================

ROLE_TRANSITIONS: Dict[UserRole, FrozenSet[Tuple[OrderStatus, OrderStatus]]] = {
    UserRole.SUPER_WORKER: frozenset({
        (OrderStatus.REQUESTED_CHANGES, OrderStatus.IN_PROGRESS),
        (OrderStatus.WORKER_DRAFT, OrderStatus.FINAL_PAYMENT_APPROVAL),
    }),
    UserRole.STUDENT: frozenset({
        (OrderStatus.WORD_COUNT_CHANGE, OrderStatus.IN_PROGRESS),
        (OrderStatus.WORD_COUNT_CHANGE, OrderStatus.DECLINED),
        (OrderStatus.DEADLINE_CHANGE, OrderStatus.IN_PROGRESS),
        (OrderStatus.DEADLINE_CHANGE, OrderStatus.DECLINED),
    }),
    UserRole.WORKER: frozenset(),
    UserRole.AGENT: frozenset(),
}

# Statuses a student may request changes from
CHANGE_REQUEST_SOURCES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.IN_PROGRESS,
    OrderStatus.COMPLETED,
})

# Statuses a super worker may propose a word count / deadline change from
PROPOSAL_SOURCES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.ASSIGNED_TO_SUPER_WORKER,
    OrderStatus.ASSIGNED_TO_WORKER,
    OrderStatus.IN_PROGRESS,
    OrderStatus.REQUESTED_CHANGES,
    OrderStatus.WORKER_DRAFT,
})

# Statuses a super worker may (re)assign a worker from
WORKER_ASSIGNMENT_SOURCES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.ASSIGNED_TO_SUPER_WORKER,
    OrderStatus.ASSIGNED_TO_WORKER,
})


# =============================================================================
# UPLOADS
# =============================================================================

UPLOAD_RULES: Dict[FilePhase, Dict] = {
    FilePhase.WORKER_DRAFT: {
        "roles": frozenset({UserRole.WORKER, UserRole.SUPER_WORKER}),
        "sources": frozenset({
            OrderStatus.ASSIGNED_TO_WORKER,
            OrderStatus.IN_PROGRESS,
            OrderStatus.REQUESTED_CHANGES,
            OrderStatus.WORKER_DRAFT,
        }),
        "forces": OrderStatus.WORKER_DRAFT,
    },
    FilePhase.SUPER_WORKER_REVIEW: {
        "roles": frozenset({UserRole.SUPER_WORKER}),
        "sources": frozenset({OrderStatus.WORKER_DRAFT, OrderStatus.FINAL_PAYMENT_APPROVAL}),
        "forces": OrderStatus.FINAL_PAYMENT_APPROVAL,
    },
    FilePhase.FINAL_APPROVED: {
        "roles": frozenset(),
        "sources": frozenset({OrderStatus.FINAL_PAYMENT_APPROVAL}),
        "forces": OrderStatus.COMPLETED,
    },
}


class OrderStateMachine:
    """
    Role-aware legality checks for order status changes.

    Checks answer (is_allowed, reason) and never mutate anything; the
    workflow service raises IllegalTransition on a False answer.
    """

    def can_transition(
        self,
        role: UserRole,
        current: OrderStatus,
        target: OrderStatus,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if a role may move an order from current to target.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if current == target:
            return False, f"Order is already {current.value}"

        if role == UserRole.SUPER_AGENT:
            return True, None

        if (current, target) in ROLE_TRANSITIONS.get(role, frozenset()):
            return True, None

        return False, f"{role.value} cannot move an order from {current.value} to {target.value}"

    def can_upload(self, role: UserRole, current: OrderStatus, phase: FilePhase) -> Tuple[bool, Optional[str]]:
        """Check if a role may upload files of this phase in the current status."""
        if phase == FilePhase.STUDENT_ORIGINAL:
            return False, "Original files are attached at submission"
        if current in CLOSED_STATUSES:
            return False, f"No uploads are accepted once an order is {current.value}"

        rule = UPLOAD_RULES[phase]
        if role == UserRole.SUPER_AGENT:
            return True, None
        if role not in rule["roles"]:
            return False, f"{role.value} cannot upload {phase.value} files"
        if current not in rule["sources"]:
            return False, f"{phase.value} files cannot be uploaded while the order is {current.value}"
        return True, None

    def forced_status(self, phase: FilePhase) -> Optional[OrderStatus]:
        rule = UPLOAD_RULES.get(phase)
        return rule["forces"] if rule else None

    def is_terminal(self, status: OrderStatus) -> bool:
        return status in TERMINAL_STATUSES


state_machine = OrderStateMachine()
