"""Operation Service - Operation lifecycle business logic"""
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from ..domain.models import (
    Agency, Team, User, Operation, OperationMember, OperationsOverview,
    OpTarget, StagingPoint, ReconcileResult
)
from ..domain.enums import OperationState, MemberRole, TransitionEvent, ChangeKind
from ..domain.errors import (
    ValidationError, InvalidTransitionError, OperationNotFoundError
)
from ..engine.permission_guard import PermissionGuard
from ..engine.reconciler import Reconciler
from ..engine.state_machine import OPERATION_MACHINE
from ..repositories.remote_store import RemoteStore
from ..utils.idgen import generate_id
from ..utils.time import Clock, utc_now
from ..utils.logger import get_logger
from .notifier import ChangeNotifier

logger = get_logger(__name__)

UNTITLED_OPERATION = "Untitled Operation"


def copy_targets(targets: Sequence[OpTarget]) -> List[OpTarget]:
    """Copies with fresh target and image ids"""
    copies = []
    for target in targets:
        images = [image.model_copy(update={"id": generate_id()}) for image in target.images]
        copies.append(target.model_copy(update={
            "id": generate_id(),
            "images": images,
        }))
    return copies


def copy_staging(staging: Sequence[StagingPoint]) -> List[StagingPoint]:
    """Copies with fresh ids"""
    return [
        point.model_copy(update={"id": generate_id()})
        for point in staging
    ]


class OperationService:
    """
    Service for the operation lifecycle

    Rules:
    - draft -start-> active -end-> ended; ended is terminal
    - Only the case agent may start, end or update an operation
    - Clone copies targets and staging, never members, invites or requests
    """

    def __init__(
        self,
        store: RemoteStore,
        reconciler: Reconciler,
        notifier: Optional[ChangeNotifier] = None,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.reconciler = reconciler
        self.guard = PermissionGuard(store)
        self.notifier = notifier or ChangeNotifier()
        self.clock = clock or utc_now

    async def get_operation(self, operation_id: UUID) -> Operation:
        """Get operation or raise OperationNotFoundError"""
        operation = await self.store.get_operation(operation_id)
        if operation is None:
            raise OperationNotFoundError(
                f"Operation {operation_id} not found",
                details={"operation_id": str(operation_id)}
            )
        return operation

    async def create_operation(
        self,
        name: str,
        creator: User,
        team: Team,
        agency: Agency,
        incident_number: Optional[str] = None,
        as_draft: bool = False
    ) -> Operation:
        """
        Create an operation with its creator as case agent

        Operations start active unless explicitly saved as a draft.
        """
        if not creator.belongs_to(team, agency):
            raise ValidationError(
                "Creator does not belong to the given team and agency",
                details={
                    "user_id": str(creator.id),
                    "team_id": str(team.id),
                    "agency_id": str(agency.id)
                }
            )

        now = self.clock()
        operation = Operation(
            name=name.strip() or UNTITLED_OPERATION,
            incident_number=(incident_number or "").strip() or None,
            state=OperationState.DRAFT if as_draft else OperationState.ACTIVE,
            created_by_user_id=creator.id,
            team_id=team.id,
            agency_id=agency.id,
            created_at=now,
            starts_at=None if as_draft else now,
        )
        case_agent = OperationMember(
            operation_id=operation.id,
            user_id=creator.id,
            role=MemberRole.CASE_AGENT,
            joined_at=now,
        )

        operation = await self.store.create_operation(operation, case_agent)

        logger.info(
            f"Created {operation.state.value} operation '{operation.name}'",
            extra={"operation_id": operation.id, "user_id": creator.id}
        )
        self.notifier.emit(ChangeKind.OPERATION_CREATED, operation.id, state=operation.state.value)
        return operation

    async def start_operation(self, operation_id: UUID, actor: User) -> Operation:
        """Move a draft to active; already-active operations are returned unchanged"""
        operation = await self.get_operation(operation_id)
        if operation.state == OperationState.ACTIVE:
            return operation

        OPERATION_MACHINE.resolve(operation.state, TransitionEvent.START)
        await self.guard.require_case_agent(operation_id, actor, "start the operation")

        now = self.clock()
        await self.store.start_operation(operation_id, now)
        operation = operation.model_copy(update={
            "state": OperationState.ACTIVE,
            "starts_at": now,
            "updated_at": now,
        })

        logger.info("Started operation", extra={"operation_id": operation_id, "user_id": actor.id})
        self.notifier.emit(ChangeKind.OPERATION_STARTED, operation_id)
        return operation

    async def end_operation(self, operation_id: UUID, actor: User) -> Operation:
        """
        End an active operation

        Raises:
            InvalidTransitionError: If the operation is not active (every
                call after the first fails this way)
            NotAuthorizedError: If the actor is not the case agent
        """
        operation = await self.get_operation(operation_id)
        OPERATION_MACHINE.resolve(operation.state, TransitionEvent.END)
        await self.guard.require_case_agent(operation_id, actor, "end the operation")

        now = self.clock()
        await self.store.end_operation(operation_id, now)
        operation = operation.model_copy(update={
            "state": OperationState.ENDED,
            "ends_at": now,
            "updated_at": now,
        })

        logger.info("Ended operation", extra={"operation_id": operation_id, "user_id": actor.id})
        self.notifier.emit(ChangeKind.OPERATION_ENDED, operation_id)
        return operation

    async def update_operation(
        self,
        operation_id: UUID,
        actor: User,
        name: str,
        incident_number: Optional[str] = None
    ) -> Operation:
        """Rename an operation or change its incident number"""
        operation = await self.get_operation(operation_id)
        if operation.is_ended:
            raise InvalidTransitionError(
                "Ended operations cannot be updated",
                details={"operation_id": str(operation_id), "current_state": operation.state.value}
            )
        await self.guard.require_case_agent(operation_id, actor, "update the operation")

        now = self.clock()
        name = name.strip() or UNTITLED_OPERATION
        incident_number = (incident_number or "").strip() or None
        await self.store.update_operation(operation_id, name, incident_number, now)

        self.notifier.emit(ChangeKind.OPERATION_UPDATED, operation_id)
        return operation.model_copy(update={
            "name": name,
            "incident_number": incident_number,
            "updated_at": now,
        })

    async def clone_operation(
        self,
        source_operation_id: UUID,
        actor: User,
        team: Team,
        agency: Agency,
        name: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Tuple[Operation, ReconcileResult]:
        """
        Start a fresh active operation from an ended one

        The actor becomes case agent of the copy. Targets and staging points
        get fresh ids and are pushed through the reconciler, so a partial
        failure is reported in the returned result rather than raised.
        """
        source = await self.get_operation(source_operation_id)
        if not source.is_ended:
            raise InvalidTransitionError(
                "Only ended operations can be cloned",
                details={"operation_id": str(source_operation_id), "current_state": source.state.value}
            )

        targets, staging = await self.store.get_operation_targets(source_operation_id)
        operation = await self.create_operation(
            name or source.name,
            actor,
            team,
            agency,
            incident_number=source.incident_number,
        )

        result = await self.reconciler.reconcile(
            operation.id,
            original_targets=[],
            current_targets=copy_targets(targets),
            original_staging=[],
            current_staging=copy_staging(staging),
            timeout=timeout,
        )

        logger.info(
            f"Cloned operation {source_operation_id} into {operation.id}",
            extra={"operation_id": operation.id, "user_id": actor.id}
        )
        self.notifier.emit(
            ChangeKind.TARGETS_RECONCILED,
            operation.id,
            succeeded=len(result.succeeded),
            failed=len(result.failed)
        )
        return operation, result

    async def load_operations(self, actor: User) -> OperationsOverview:
        """Active, previous and draft operations for the operations list"""
        active_pairs = await self.store.get_all_active_operations(actor.id)
        previous = await self.store.get_previous_operations(actor.id)
        drafts = await self.store.get_draft_operations(actor.id)

        overview = OperationsOverview(
            active=[op for op, _ in active_pairs],
            previous=previous,
            drafts=drafts,
            member_operation_ids={op.id for op, is_member in active_pairs if is_member},
        )

        logger.debug(
            f"Loaded {len(overview.active)} active, {len(previous)} previous, {len(drafts)} draft operations",
            extra={"user_id": actor.id}
        )
        self.notifier.emit(ChangeKind.OPERATIONS_LOADED, user_id=str(actor.id))
        return overview

    @staticmethod
    def is_member_of(overview: OperationsOverview, operation_id: UUID) -> bool:
        return overview.is_member_of(operation_id)
