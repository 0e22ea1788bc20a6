"""Target Edit Session - Working copy of an operation's targets and staging points"""
from typing import Any, List, Optional
from uuid import UUID

from ..domain.models import User, OpTarget, StagingPoint, ReconcileResult
from ..domain.enums import ChangeKind, ReconcileAction
from ..domain.errors import ValidationError, InvalidTransitionError, OperationNotFoundError
from ..engine.permission_guard import PermissionGuard
from ..engine.reconciler import Reconciler, ChangeSet, plan_changes
from ..repositories.remote_store import RemoteStore
from ..utils.idgen import generate_id
from ..utils.logger import get_logger
from .notifier import ChangeNotifier

logger = get_logger(__name__)


class TargetEditSession:
    """
    Edit session over targets and staging points

    The original snapshot is loaded once when the session begins. Edits go to
    a working copy; commit pushes the identity diff through the reconciler.

    Rules:
    - Only current members of a non-ended operation may edit
    - edit_target/edit_staging_point keep the id, so commit does not send
      them; replace_target/replace_staging_point re-key the entity so the
      change reaches the store as delete + create
    - Commit moves the items that reached the store into the original and
      keeps the working copy, so committing again retries only failed or
      abandoned items and never touches entities added by other members
    """

    def __init__(
        self,
        operation_id: UUID,
        reconciler: Reconciler,
        original_targets: List[OpTarget],
        original_staging: List[StagingPoint],
        notifier: Optional[ChangeNotifier] = None
    ):
        self.operation_id = operation_id
        self._reconciler = reconciler
        self._notifier = notifier or ChangeNotifier()
        self._original_targets = list(original_targets)
        self._original_staging = list(original_staging)
        self._targets = list(original_targets)
        self._staging = list(original_staging)

    @classmethod
    async def begin(
        cls,
        operation_id: UUID,
        actor: User,
        store: RemoteStore,
        reconciler: Reconciler,
        notifier: Optional[ChangeNotifier] = None
    ) -> "TargetEditSession":
        """Check access and load the original snapshot"""
        operation = await store.get_operation(operation_id)
        if operation is None:
            raise OperationNotFoundError(
                f"Operation {operation_id} not found",
                details={"operation_id": str(operation_id)}
            )
        if operation.is_ended:
            raise InvalidTransitionError(
                "Targets of an ended operation cannot be edited",
                details={"operation_id": str(operation_id), "current_state": operation.state.value}
            )
        await PermissionGuard(store).require_member(operation_id, actor, "edit targets")

        targets, staging = await store.get_operation_targets(operation_id)
        logger.info(
            f"Edit session started with {len(targets)} targets and {len(staging)} staging points",
            extra={"operation_id": operation_id, "user_id": actor.id}
        )
        return cls(operation_id, reconciler, targets, staging, notifier)

    # =========================================================================
    # Working copy
    # =========================================================================

    @property
    def original_targets(self) -> List[OpTarget]:
        return list(self._original_targets)

    @property
    def original_staging(self) -> List[StagingPoint]:
        return list(self._original_staging)

    @property
    def targets(self) -> List[OpTarget]:
        return list(self._targets)

    @property
    def staging(self) -> List[StagingPoint]:
        return list(self._staging)

    @staticmethod
    def _index_of(items, entity_id: UUID, kind: str) -> int:
        for index, item in enumerate(items):
            if item.id == entity_id:
                return index
        raise ValidationError(
            f"No {kind} {entity_id} in the working copy",
            details={"entity_id": str(entity_id), "entity_type": kind}
        )

    def add_target(self, target: OpTarget) -> OpTarget:
        if any(t.id == target.id for t in self._targets):
            raise ValidationError(
                f"Target {target.id} is already in the working copy",
                details={"entity_id": str(target.id)}
            )
        self._targets.append(target)
        return target

    def remove_target(self, target_id: UUID) -> OpTarget:
        return self._targets.pop(self._index_of(self._targets, target_id, "target"))

    def edit_target(self, target_id: UUID, **changes: Any) -> OpTarget:
        """Change fields in place, keeping the id; not sent on commit"""
        index = self._index_of(self._targets, target_id, "target")
        edited = self._targets[index].model_copy(update=changes)
        self._targets[index] = edited
        return edited

    def replace_target(self, target_id: UUID, **changes: Any) -> OpTarget:
        """Change fields under a new id so commit deletes the old and creates the new"""
        index = self._index_of(self._targets, target_id, "target")
        replacement = self._targets[index].model_copy(update={**changes, "id": generate_id()})
        self._targets[index] = replacement
        return replacement

    def add_staging_point(self, point: StagingPoint) -> StagingPoint:
        if any(p.id == point.id for p in self._staging):
            raise ValidationError(
                f"Staging point {point.id} is already in the working copy",
                details={"entity_id": str(point.id)}
            )
        self._staging.append(point)
        return point

    def remove_staging_point(self, staging_id: UUID) -> StagingPoint:
        return self._staging.pop(self._index_of(self._staging, staging_id, "staging_point"))

    def edit_staging_point(self, staging_id: UUID, **changes: Any) -> StagingPoint:
        """Change fields in place, keeping the id; not sent on commit"""
        index = self._index_of(self._staging, staging_id, "staging_point")
        edited = self._staging[index].model_copy(update=changes)
        self._staging[index] = edited
        return edited

    def replace_staging_point(self, staging_id: UUID, **changes: Any) -> StagingPoint:
        index = self._index_of(self._staging, staging_id, "staging_point")
        replacement = self._staging[index].model_copy(update={**changes, "id": generate_id()})
        self._staging[index] = replacement
        return replacement

    # =========================================================================
    # Commit
    # =========================================================================

    def pending_changes(self) -> ChangeSet:
        """What commit would send right now"""
        return plan_changes(self._original_targets, self._targets, self._original_staging, self._staging)

    @property
    def has_changes(self) -> bool:
        return not self.pending_changes().is_empty

    def _advance_original(self, result: ReconcileResult) -> None:
        """Apply the outcomes that reached the store to the original snapshot"""
        deleted = {
            item.entity_id for item in result.succeeded if item.action == ReconcileAction.DELETE
        }
        created = {
            item.entity_id for item in result.succeeded if item.action == ReconcileAction.CREATE
        }
        self._original_targets = [t for t in self._original_targets if t.id not in deleted]
        self._original_targets.extend(t for t in self._targets if t.id in created)
        self._original_staging = [s for s in self._original_staging if s.id not in deleted]
        self._original_staging.extend(s for s in self._staging if s.id in created)

    async def commit(self, timeout: Optional[float] = None) -> ReconcileResult:
        """
        Reconcile the working copy with the store

        Returns:
            Per-item outcomes; partial failures are reported, not raised
        """
        result = await self._reconciler.reconcile(
            self.operation_id,
            self._original_targets,
            self._targets,
            self._original_staging,
            self._staging,
            timeout=timeout,
        )
        self._advance_original(result)

        self._notifier.emit(
            ChangeKind.TARGETS_RECONCILED,
            self.operation_id,
            correlation_id=result.correlation_id,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            skipped=len(result.skipped),
            abandoned=len(result.abandoned)
        )
        return result
