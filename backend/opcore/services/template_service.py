"""Template Service - Reusable sets of targets and staging points"""
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from ..domain.models import (
    Agency, Team, User, Operation, OpTarget, StagingPoint, ReconcileResult,
    OperationTemplate, TemplateTarget, TemplateStagingPoint
)
from ..domain.enums import TemplateScope, ChangeKind
from ..domain.errors import ValidationError, NotAuthorizedError, TemplateNotFoundError
from ..engine.reconciler import Reconciler, target_fields
from ..repositories.remote_store import RemoteStore
from ..utils.time import Clock, utc_now
from ..utils.logger import get_logger
from .operation_service import OperationService

logger = get_logger(__name__)


def template_target(target: OpTarget) -> TemplateTarget:
    return TemplateTarget(kind=target.kind, label=target.label, fields=target_fields(target))


def target_from_template(item: TemplateTarget) -> OpTarget:
    """Fresh target (new id, no images) from a template entry"""
    data = dict(item.fields)
    data.update({"kind": item.kind, "label": item.label})
    return OpTarget.model_validate(data)


class TemplateService:
    """
    Service for operation templates

    Rules:
    - Templates carry target descriptions and geocoded staging points only;
      images and ungeocoded staging points are left out
    - Personal templates are visible to their creator, public ones to the
      whole agency
    """

    def __init__(
        self,
        store: RemoteStore,
        operations: OperationService,
        reconciler: Reconciler,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.operations = operations
        self.reconciler = reconciler
        self.clock = clock or utc_now

    async def save_as_template(
        self,
        actor: User,
        name: str,
        targets: Sequence[OpTarget],
        staging: Sequence[StagingPoint],
        description: Optional[str] = None,
        is_public: bool = False
    ) -> OperationTemplate:
        name = name.strip()
        if not name:
            raise ValidationError("Template name is required", details={"field": "name"})

        dropped = [p for p in staging if not p.has_coordinates]
        if dropped:
            logger.info(
                f"Leaving {len(dropped)} staging points without coordinates out of template '{name}'",
                extra={"user_id": actor.id}
            )

        template = OperationTemplate(
            name=name,
            description=(description or "").strip() or None,
            is_public=is_public,
            created_by_user_id=actor.id,
            agency_id=actor.agency_id,
            targets=[template_target(t) for t in targets],
            staging=[
                TemplateStagingPoint(label=p.label, address=p.address, lat=p.lat, lng=p.lng)
                for p in staging if p.has_coordinates
            ],
            created_at=self.clock(),
        )
        await self.store.save_template(template)

        logger.info(
            f"Saved template '{name}' with {len(template.targets)} targets "
            f"and {len(template.staging)} staging points",
            extra={"user_id": actor.id}
        )
        return template

    async def get_templates(self, actor: User, scope: TemplateScope = TemplateScope.PERSONAL) -> List[OperationTemplate]:
        return await self.store.get_templates(actor.id, actor.agency_id, scope)

    async def get_template(self, template_id: UUID, actor: User) -> OperationTemplate:
        template = await self.store.get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(
                f"Template {template_id} not found",
                details={"template_id": str(template_id)}
            )
        visible = template.created_by_user_id == actor.id or (
            template.is_public and template.agency_id == actor.agency_id
        )
        if not visible:
            raise NotAuthorizedError(
                "Template is not visible to this user",
                details={"template_id": str(template_id), "user_id": str(actor.id)}
            )
        return template

    async def create_operation_from_template(
        self,
        template_id: UUID,
        actor: User,
        team: Team,
        agency: Agency,
        name: Optional[str] = None,
        incident_number: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Tuple[Operation, ReconcileResult]:
        """New active operation seeded with the template's targets and staging points"""
        template = await self.get_template(template_id, actor)
        operation = await self.operations.create_operation(
            name or template.name,
            actor,
            team,
            agency,
            incident_number=incident_number,
        )

        result = await self.reconciler.reconcile(
            operation.id,
            original_targets=[],
            current_targets=[target_from_template(item) for item in template.targets],
            original_staging=[],
            current_staging=[
                StagingPoint(label=p.label, address=p.address, lat=p.lat, lng=p.lng)
                for p in template.staging
            ],
            timeout=timeout,
        )

        logger.info(
            f"Created operation from template {template_id}",
            extra={"operation_id": operation.id, "user_id": actor.id}
        )
        self.operations.notifier.emit(
            ChangeKind.TARGETS_RECONCILED,
            operation.id,
            succeeded=len(result.succeeded),
            failed=len(result.failed)
        )
        return operation, result
