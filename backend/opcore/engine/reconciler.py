"""Reconciler - Push edits of targets and staging points to the remote store

Given the snapshot loaded when editing began and the working copy at commit
time, issue the minimal set of creates and deletes and report per-item
outcomes. Entities are compared by identity only: an entity whose id exists on
both sides is never sent, even when its fields changed.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from ..domain.enums import OpTargetKind, EntityType, ReconcileAction, ReconcileOutcome
from ..domain.errors import MissingPreconditionError
from ..domain.models import (
    OpTarget, OpTargetImage, StagingPoint, ReconcileItemResult, ReconcileResult
)
from ..repositories.remote_store import RemoteStore
from ..utils.idgen import generate_correlation_id
from ..utils.logger import get_logger, set_correlation_id, reset_correlation_id
from ..utils.time import format_iso

logger = get_logger(__name__)

T = TypeVar("T", OpTarget, StagingPoint)

KIND_FIELDS: Dict[OpTargetKind, Tuple[str, ...]] = {
    OpTargetKind.PERSON: ("person_first_name", "person_last_name", "person_phone"),
    OpTargetKind.VEHICLE: ("vehicle_make", "vehicle_model", "vehicle_color", "vehicle_plate"),
    OpTargetKind.LOCATION: ("location_name", "location_address", "location_lat", "location_lng"),
}


# ============================================================================
# Diffing
# ============================================================================

def diff_snapshot(original: Sequence[T], current: Sequence[T]) -> Tuple[List[T], List[T]]:
    """
    Identity-only diff

    Returns:
        (added, removed): entities of current whose id is not in original,
        and entities of original whose id is not in current. Order follows
        the input lists.
    """
    original_ids = {item.id for item in original}
    current_ids = {item.id for item in current}
    added = [item for item in current if item.id not in original_ids]
    removed = [item for item in original if item.id not in current_ids]
    return added, removed


class ChangeSet(BaseModel):
    """Creates and deletes a commit would issue"""
    targets_to_delete: List[OpTarget] = Field(default_factory=list)
    targets_to_create: List[OpTarget] = Field(default_factory=list)
    staging_to_delete: List[StagingPoint] = Field(default_factory=list)
    staging_to_create: List[StagingPoint] = Field(default_factory=list)
    staging_skipped: List[StagingPoint] = Field(
        default_factory=list,
        description="New staging points that cannot be sent without coordinates"
    )

    @property
    def is_empty(self) -> bool:
        return not (
            self.targets_to_delete or self.targets_to_create
            or self.staging_to_delete or self.staging_to_create
            or self.staging_skipped
        )

    @property
    def call_count(self) -> int:
        return (
            len(self.targets_to_delete) + len(self.targets_to_create)
            + len(self.staging_to_delete) + len(self.staging_to_create)
        )


def plan_changes(
    original_targets: Sequence[OpTarget],
    current_targets: Sequence[OpTarget],
    original_staging: Sequence[StagingPoint],
    current_staging: Sequence[StagingPoint]
) -> ChangeSet:
    """Compute the change set for both entity families"""
    targets_added, targets_removed = diff_snapshot(original_targets, current_targets)
    staging_added, staging_removed = diff_snapshot(original_staging, current_staging)
    return ChangeSet(
        targets_to_delete=targets_removed,
        targets_to_create=targets_added,
        staging_to_delete=staging_removed,
        staging_to_create=[s for s in staging_added if s.has_coordinates],
        staging_skipped=[s for s in staging_added if not s.has_coordinates],
    )


# ============================================================================
# Payloads
# ============================================================================

def serialize_image(image: OpTargetImage) -> Dict[str, Any]:
    """Image metadata sent inline with a target create"""
    return {
        "id": str(image.id),
        "storage_kind": image.storage_kind.value,
        "filename": image.filename,
        "created_at": format_iso(image.created_at),
        "remote_url": image.remote_url,
        "local_path": image.local_path,
        "caption": image.caption,
        "pixel_width": image.pixel_width,
        "pixel_height": image.pixel_height,
        "byte_size": image.byte_size,
    }


def target_fields(target: OpTarget) -> Dict[str, Any]:
    """Common fields plus the fields of the target's kind"""
    fields: Dict[str, Any] = {
        "label": target.label,
        "notes": target.notes,
        "status": target.status.value,
    }
    for name in KIND_FIELDS[target.kind]:
        fields[name] = getattr(target, name)
    return fields


# ============================================================================
# Execution
# ============================================================================

class _PlannedItem:
    """One remote call, or a skip, in result order"""

    def __init__(
        self,
        entity_type: EntityType,
        entity_id: UUID,
        action: ReconcileAction,
        label: Optional[str],
        call: Optional[Callable[[], Awaitable[Any]]] = None,
        skip_reason: Optional[str] = None
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.action = action
        self.label = label
        self.call = call
        self.skip_reason = skip_reason

    def result(self, outcome: ReconcileOutcome, error: Optional[str] = None) -> ReconcileItemResult:
        return ReconcileItemResult(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            action=self.action,
            outcome=outcome,
            label=self.label,
            error=error,
        )


class Reconciler:
    """
    Reconciliation engine

    Rules:
    - Missing operation id fails the whole batch before any call is made
    - Staging points without coordinates are reported skipped, never sent
    - Item calls run concurrently, bounded by max_concurrency
    - A failing item is reported failed; the batch itself never raises for it
    - Items unfinished at the deadline are cancelled and reported abandoned
    - Result order: target deletes, target creates, staging deletes, staging
      creates (skipped staging points last)
    """

    def __init__(self, store: RemoteStore, max_concurrency: int = 8):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._max_concurrency = max_concurrency

    async def reconcile(
        self,
        operation_id: Optional[UUID],
        original_targets: Sequence[OpTarget],
        current_targets: Sequence[OpTarget],
        original_staging: Sequence[StagingPoint],
        current_staging: Sequence[StagingPoint],
        timeout: Optional[float] = None
    ) -> ReconcileResult:
        """
        Reconcile the working copy against the original snapshot

        Args:
            operation_id: Operation that owns the entities
            original_targets / original_staging: Snapshot loaded at edit start
            current_targets / current_staging: Working copy at commit
            timeout: Optional deadline in seconds for the whole batch

        Returns:
            ReconcileResult with one item per create, delete or skip

        Raises:
            MissingPreconditionError: If operation_id is None
        """
        if operation_id is None:
            raise MissingPreconditionError(
                "No active operation to reconcile targets against",
                details={"field": "operation_id"}
            )

        correlation_id = generate_correlation_id()
        token = set_correlation_id(correlation_id)
        try:
            changes = plan_changes(original_targets, current_targets, original_staging, current_staging)
            plan = self._build_plan(operation_id, changes)

            logger.info(
                f"Reconciling operation {operation_id}: "
                f"{len(changes.targets_to_delete)} target deletes, "
                f"{len(changes.targets_to_create)} target creates, "
                f"{len(changes.staging_to_delete)} staging deletes, "
                f"{len(changes.staging_to_create)} staging creates, "
                f"{len(changes.staging_skipped)} skipped",
                extra={"operation_id": operation_id}
            )

            items = await self._execute(operation_id, plan, timeout)
            result = ReconcileResult(operation_id=operation_id, correlation_id=correlation_id, items=items)

            logger.info(
                f"Reconciled operation {operation_id}: {len(result.succeeded)} ok, "
                f"{len(result.failed)} failed, {len(result.skipped)} skipped, "
                f"{len(result.abandoned)} abandoned",
                extra={"operation_id": operation_id}
            )
            return result
        finally:
            reset_correlation_id(token)

    def _build_plan(self, operation_id: UUID, changes: ChangeSet) -> List[_PlannedItem]:
        store = self._store
        plan: List[_PlannedItem] = []

        for target in changes.targets_to_delete:
            plan.append(_PlannedItem(
                EntityType.TARGET, target.id, ReconcileAction.DELETE, target.label,
                call=lambda t=target: store.delete_target(t.id)
            ))

        for target in changes.targets_to_create:
            plan.append(_PlannedItem(
                EntityType.TARGET, target.id, ReconcileAction.CREATE, target.label,
                call=lambda t=target: store.create_target(
                    operation_id,
                    t.id,
                    t.kind,
                    target_fields(t),
                    [serialize_image(image) for image in t.images]
                )
            ))

        for point in changes.staging_to_delete:
            plan.append(_PlannedItem(
                EntityType.STAGING_POINT, point.id, ReconcileAction.DELETE, point.label,
                call=lambda p=point: store.delete_staging_point(p.id)
            ))

        for point in changes.staging_to_create:
            plan.append(_PlannedItem(
                EntityType.STAGING_POINT, point.id, ReconcileAction.CREATE, point.label,
                call=lambda p=point: store.create_staging_point(
                    operation_id, p.id, p.label, p.address, p.lat, p.lng
                )
            ))

        for point in changes.staging_skipped:
            plan.append(_PlannedItem(
                EntityType.STAGING_POINT, point.id, ReconcileAction.CREATE, point.label,
                skip_reason="Staging point has no coordinates"
            ))

        return plan

    async def _execute(
        self,
        operation_id: UUID,
        plan: List[_PlannedItem],
        timeout: Optional[float]
    ) -> List[ReconcileItemResult]:
        results: List[Optional[ReconcileItemResult]] = [None] * len(plan)
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks: Dict[int, "asyncio.Task[ReconcileItemResult]"] = {}

        for index, item in enumerate(plan):
            if item.call is None:
                logger.info(
                    f"Skipping {item.entity_type.value} {item.entity_id}: {item.skip_reason}",
                    extra={"operation_id": operation_id, "entity_id": item.entity_id,
                           "entity_type": item.entity_type.value, "outcome": ReconcileOutcome.SKIPPED.value}
                )
                results[index] = item.result(ReconcileOutcome.SKIPPED, item.skip_reason)
            else:
                tasks[index] = asyncio.create_task(self._run_item(operation_id, item, semaphore))

        if tasks:
            _, pending = await asyncio.wait(list(tasks.values()), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            for index, task in tasks.items():
                if task.cancelled():
                    item = plan[index]
                    logger.warning(
                        f"Abandoned {item.action.value} of {item.entity_type.value} {item.entity_id} "
                        f"after {timeout}s deadline",
                        extra={"operation_id": operation_id, "entity_id": item.entity_id,
                               "entity_type": item.entity_type.value,
                               "outcome": ReconcileOutcome.ABANDONED.value}
                    )
                    results[index] = item.result(
                        ReconcileOutcome.ABANDONED, "Deadline expired before the call finished"
                    )
                else:
                    results[index] = task.result()

        return [result for result in results if result is not None]

    @staticmethod
    async def _run_item(
        operation_id: UUID,
        item: _PlannedItem,
        semaphore: asyncio.Semaphore
    ) -> ReconcileItemResult:
        async with semaphore:
            try:
                await item.call()
            except Exception as e:
                logger.warning(
                    f"Failed to {item.action.value} {item.entity_type.value} {item.entity_id}: {e}",
                    extra={"operation_id": operation_id, "entity_id": item.entity_id,
                           "entity_type": item.entity_type.value, "action": item.action.value,
                           "outcome": ReconcileOutcome.FAILED.value}
                )
                return item.result(ReconcileOutcome.FAILED, str(e))

        logger.debug(
            f"{item.action.value} {item.entity_type.value} {item.entity_id} ok",
            extra={"operation_id": operation_id, "entity_id": item.entity_id}
        )
        return item.result(ReconcileOutcome.OK)
