"""
Order Workflow

State machine, the status fan-out table and the transactional workflow
service built on top of them.
"""

from .state_machine import (
    OrderStateMachine, STATE_CONFIG, ROLE_TRANSITIONS, UPLOAD_RULES, TERMINAL_STATUSES, state_machine
)
from .effects import Audience, Effect, QueuedNotification, STATUS_EFFECTS, resolve_effects
from .serializers import serialize_order
from .service import OrderWorkflowService

__all__ = [
    'OrderStateMachine',
    'STATE_CONFIG',
    'ROLE_TRANSITIONS',
    'UPLOAD_RULES',
    'TERMINAL_STATUSES',
    'state_machine',
    'Audience',
    'Effect',
    'QueuedNotification',
    'STATUS_EFFECTS',
    'resolve_effects',
    'serialize_order',
    'OrderWorkflowService',
]
