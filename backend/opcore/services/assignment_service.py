"""Assignment Service - Sending members to locations"""
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from ..config.settings import Settings, get_settings
from ..domain.models import (
    User, AssignedLocation, AssignmentProgress, LocationPoint, RouteInfo
)
from ..domain.enums import AssignmentStatus, TransitionEvent, ChangeKind, OperationState
from ..domain.errors import (
    NotAuthorizedError, InvalidTransitionError, NotAMemberError,
    AssignmentNotFoundError, OperationNotFoundError
)
from ..engine.permission_guard import PermissionGuard
from ..engine.state_machine import ASSIGNMENT_MACHINE
from ..repositories.remote_store import RemoteStore
from ..utils.geo import haversine_meters, format_distance
from ..utils.time import Clock, utc_now, format_travel_time, format_clock_time
from ..utils.logger import get_logger
from .notifier import ChangeNotifier

logger = get_logger(__name__)

CALCULATING = "Calculating…"


class AssignmentService:
    """
    Service for assigned locations

    Rules:
    - Only the case agent assigns, and only to current members of an active operation
    - Only the assignee acknowledges (assigned -> en_route) and arrives (en_route -> arrived)
    - The case agent or the assignee may cancel a non-terminal assignment
    - Distance and ETA are derived for display and never persisted
    """

    def __init__(
        self,
        store: RemoteStore,
        notifier: Optional[ChangeNotifier] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.guard = PermissionGuard(store)
        self.notifier = notifier or ChangeNotifier()
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    async def get_assignment(self, assignment_id: UUID) -> AssignedLocation:
        assignment = await self.store.get_assignment(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(
                f"Assignment {assignment_id} not found",
                details={"assignment_id": str(assignment_id)}
            )
        return assignment

    async def assign(
        self,
        operation_id: UUID,
        case_agent: User,
        assignee_user_id: UUID,
        lat: float,
        lng: float,
        label: Optional[str] = None,
        notes: Optional[str] = None
    ) -> AssignedLocation:
        """
        Assign a member to a location

        Raises:
            NotAuthorizedError: If the caller is not the case agent
            InvalidTransitionError: If the operation is not active
            NotAMemberError: If the assignee is not a current member
        """
        operation = await self.store.get_operation(operation_id)
        if operation is None:
            raise OperationNotFoundError(
                f"Operation {operation_id} not found",
                details={"operation_id": str(operation_id)}
            )
        members = await self.guard.require_case_agent(operation_id, case_agent, "assign locations")
        if operation.state != OperationState.ACTIVE:
            raise InvalidTransitionError(
                "Assignments require an active operation",
                details={"operation_id": str(operation_id), "current_state": operation.state.value}
            )
        if self.guard.membership_in(members, assignee_user_id) is None:
            raise NotAMemberError(
                "Assignee must be a current member",
                details={"operation_id": str(operation_id), "user_id": str(assignee_user_id)}
            )

        now = self.clock()
        assignment = AssignedLocation(
            operation_id=operation_id,
            assigned_by_user_id=case_agent.id,
            assigned_to_user_id=assignee_user_id,
            lat=lat,
            lng=lng,
            label=label,
            notes=notes,
            assigned_at=now,
            updated_at=now,
        )
        assignment = await self.store.create_assignment(assignment)

        logger.info(
            f"Assigned {assignee_user_id} to '{label}'",
            extra={"operation_id": operation_id, "user_id": case_agent.id, "assignment_id": assignment.id}
        )
        self._changed(assignment)
        return assignment

    async def _transition(
        self,
        assignment: AssignedLocation,
        event: TransitionEvent,
        actor: User
    ) -> AssignedLocation:
        status = ASSIGNMENT_MACHINE.resolve(assignment.status, event)
        now = self.clock()

        updates = {"status": status, "updated_at": now}
        if status == AssignmentStatus.EN_ROUTE:
            updates["acknowledged_at"] = now
        elif status == AssignmentStatus.ARRIVED:
            updates["completed_at"] = now

        updated = assignment.model_copy(update=updates)
        await self.store.update_assignment(updated, expected_status=assignment.status)

        logger.info(
            f"Assignment {assignment.status.value} -> {status.value}",
            extra={
                "operation_id": assignment.operation_id,
                "assignment_id": assignment.id,
                "user_id": actor.id,
                "status": status.value
            }
        )
        self._changed(updated)
        return updated

    def _require_assignee(self, assignment: AssignedLocation, actor: User, action: str) -> None:
        if assignment.assigned_to_user_id != actor.id:
            raise NotAuthorizedError(
                f"Only the assignee may {action}",
                details={"assignment_id": str(assignment.id), "user_id": str(actor.id)}
            )

    async def acknowledge(self, assignment_id: UUID, actor: User) -> AssignedLocation:
        """Assignee confirms and starts moving: assigned -> en_route"""
        assignment = await self.get_assignment(assignment_id)
        self._require_assignee(assignment, actor, "acknowledge this assignment")
        return await self._transition(assignment, TransitionEvent.ACKNOWLEDGE, actor)

    async def mark_arrived(self, assignment_id: UUID, actor: User) -> AssignedLocation:
        """Assignee reached the location: en_route -> arrived"""
        assignment = await self.get_assignment(assignment_id)
        self._require_assignee(assignment, actor, "mark this assignment arrived")
        return await self._transition(assignment, TransitionEvent.ARRIVE, actor)

    async def cancel(self, assignment_id: UUID, actor: User) -> AssignedLocation:
        """Case agent or assignee cancels a non-terminal assignment"""
        assignment = await self.get_assignment(assignment_id)
        if assignment.assigned_to_user_id != actor.id:
            if not await self.guard.is_case_agent(assignment.operation_id, actor.id):
                raise NotAuthorizedError(
                    "Only the case agent or the assignee may cancel this assignment",
                    details={"assignment_id": str(assignment_id), "user_id": str(actor.id)}
                )
        return await self._transition(assignment, TransitionEvent.CANCEL, actor)

    async def list_assignments(self, operation_id: UUID) -> List[AssignedLocation]:
        return await self.store.get_operation_assignments(operation_id)

    async def active_assignment_for(self, operation_id: UUID, user_id: UUID) -> Optional[AssignedLocation]:
        """Most recent open assignment of a member, if any"""
        open_assignments = [
            a for a in await self.store.get_operation_assignments(operation_id)
            if a.assigned_to_user_id == user_id and a.is_open
        ]
        if not open_assignments:
            return None
        return max(open_assignments, key=lambda a: a.assigned_at)

    def progress_for(
        self,
        assignment: AssignedLocation,
        latest_location: Optional[LocationPoint] = None,
        route: Optional[RouteInfo] = None
    ) -> AssignmentProgress:
        """
        Distance and ETA for display

        Distance prefers the route length and falls back to the straight line
        from the latest known position. Anything not yet known reads
        "Calculating…".
        """
        straight_line: Optional[float] = None
        if latest_location is not None:
            straight_line = haversine_meters(
                latest_location.lat, latest_location.lng, assignment.lat, assignment.lng
            )

        if route is not None:
            distance_text = format_distance(route.distance_meters)
            travel_time_text = format_travel_time(route.duration_seconds)
            eta_text = format_clock_time(self.clock() + timedelta(seconds=route.duration_seconds))
        else:
            distance_text = format_distance(straight_line) if straight_line is not None else CALCULATING
            travel_time_text = CALCULATING
            eta_text = CALCULATING

        is_near = straight_line is not None and straight_line <= self.settings.arrival_threshold_meters

        return AssignmentProgress(
            assignment_id=assignment.id,
            status=assignment.status,
            distance_text=distance_text,
            travel_time_text=travel_time_text,
            eta_text=eta_text,
            is_near=is_near,
            route_available=route is not None,
        )

    def _changed(self, assignment: AssignedLocation) -> None:
        self.notifier.emit(
            ChangeKind.ASSIGNMENT_CHANGED,
            assignment.operation_id,
            assignment_id=str(assignment.id),
            status=assignment.status.value
        )
