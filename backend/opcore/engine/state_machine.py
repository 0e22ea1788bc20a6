"""State Machines - Resolve the next state for an entity given an event"""
from datetime import datetime
from enum import Enum
from typing import Dict, Generic, List, Tuple, TypeVar, Union

from ..domain.enums import (
    OperationState, InviteStatus, JoinRequestStatus, AssignmentStatus, TransitionEvent
)
from ..domain.errors import InvalidTransitionError
from ..domain.models import OperationInvite, JoinRequest
from ..utils.time import is_past
from ..utils.logger import get_logger

logger = get_logger(__name__)

S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """
    Table-driven transition resolver

    Given current state S and event E:
    1. Look up (S, E) in the transition table
    2. If present -> return the target state
    3. If absent -> raise InvalidTransitionError
    """

    def __init__(self, name: str, transitions: Dict[Tuple[S, TransitionEvent], S], terminal: List[S]):
        self.name = name
        self._transitions = transitions
        self._terminal = frozenset(terminal)

    def resolve(self, current: S, event: TransitionEvent) -> S:
        """
        Resolve the next state

        Raises:
            InvalidTransitionError: If the event is not allowed in the current state
        """
        target = self._transitions.get((current, event))
        if target is None:
            raise InvalidTransitionError(
                f"{self.name} cannot {event.value.lower()} from state '{current.value}'",
                details={
                    "entity": self.name,
                    "current_state": current.value,
                    "event": event.value
                }
            )

        logger.debug(f"{self.name}: {current.value} -[{event.value}]-> {target.value}")
        return target

    def can(self, current: S, event: TransitionEvent) -> bool:
        return (current, event) in self._transitions

    def is_terminal(self, state: S) -> bool:
        return state in self._terminal

    def events_for(self, current: S) -> List[TransitionEvent]:
        """Events allowed from a state"""
        return [event for (state, event) in self._transitions if state == current]


OPERATION_MACHINE: StateMachine[OperationState] = StateMachine(
    "Operation",
    {
        (OperationState.DRAFT, TransitionEvent.START): OperationState.ACTIVE,
        (OperationState.ACTIVE, TransitionEvent.END): OperationState.ENDED,
    },
    terminal=[OperationState.ENDED],
)

INVITE_MACHINE: StateMachine[InviteStatus] = StateMachine(
    "Invite",
    {
        (InviteStatus.PENDING, TransitionEvent.ACCEPT): InviteStatus.ACCEPTED,
        (InviteStatus.PENDING, TransitionEvent.DECLINE): InviteStatus.DECLINED,
        (InviteStatus.PENDING, TransitionEvent.EXPIRE): InviteStatus.EXPIRED,
    },
    terminal=[InviteStatus.ACCEPTED, InviteStatus.DECLINED, InviteStatus.EXPIRED],
)

JOIN_REQUEST_MACHINE: StateMachine[JoinRequestStatus] = StateMachine(
    "JoinRequest",
    {
        (JoinRequestStatus.PENDING, TransitionEvent.APPROVE): JoinRequestStatus.APPROVED,
        (JoinRequestStatus.PENDING, TransitionEvent.DENY): JoinRequestStatus.DENIED,
        (JoinRequestStatus.PENDING, TransitionEvent.EXPIRE): JoinRequestStatus.EXPIRED,
    },
    terminal=[JoinRequestStatus.APPROVED, JoinRequestStatus.DENIED, JoinRequestStatus.EXPIRED],
)

ASSIGNMENT_MACHINE: StateMachine[AssignmentStatus] = StateMachine(
    "Assignment",
    {
        (AssignmentStatus.ASSIGNED, TransitionEvent.ACKNOWLEDGE): AssignmentStatus.EN_ROUTE,
        (AssignmentStatus.EN_ROUTE, TransitionEvent.ARRIVE): AssignmentStatus.ARRIVED,
        (AssignmentStatus.ASSIGNED, TransitionEvent.CANCEL): AssignmentStatus.CANCELLED,
        (AssignmentStatus.EN_ROUTE, TransitionEvent.CANCEL): AssignmentStatus.CANCELLED,
    },
    terminal=[AssignmentStatus.ARRIVED, AssignmentStatus.CANCELLED],
)


# ============================================================================
# Read-time expiry
# ============================================================================

Expiring = Union[OperationInvite, JoinRequest]


def effective_status(record: Expiring, now: datetime):
    """
    Status as every consumer must see it

    A record stored as pending whose expires_at has passed reads as expired,
    whatever the stored value says. Nothing sweeps these rows.
    """
    if isinstance(record, OperationInvite):
        pending, expired = InviteStatus.PENDING, InviteStatus.EXPIRED
    else:
        pending, expired = JoinRequestStatus.PENDING, JoinRequestStatus.EXPIRED

    if record.status == pending and is_past(record.expires_at, now):
        return expired
    return record.status


def with_effective_status(record: Expiring, now: datetime) -> Expiring:
    """Copy of the record carrying its read-time status"""
    status = effective_status(record, now)
    if status == record.status:
        return record
    return record.model_copy(update={"status": status})


def is_effectively_pending(record: Expiring, now: datetime) -> bool:
    return effective_status(record, now).value == "pending"
