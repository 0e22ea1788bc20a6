"""Remote Store - Contract for the backend that owns operation state

Every call is async and may raise TransportError. Implementations do not
retry; services check invariants before calling in. State changes (start,
end, accept, decline, approve, assignment status) are conditional on the
state being left and raise InvalidTransitionError when another caller got
there first.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from ..domain.enums import AssignmentStatus, OpTargetKind, TemplateScope
from ..domain.models import (
    Operation, OperationMember, OperationInvite, JoinRequest, OpTarget,
    StagingPoint, AssignedLocation, OperationTemplate, User
)


class RemoteStore(ABC):
    """Async persistence contract for operations and everything they own"""

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_operation(self, operation: Operation, case_agent: OperationMember) -> Operation:
        """Persist a new operation together with its creator's case agent row"""

    @abstractmethod
    async def get_operation(self, operation_id: UUID) -> Optional[Operation]:
        ...

    @abstractmethod
    async def start_operation(self, operation_id: UUID, started_at: datetime) -> None:
        """Move a draft operation to active"""

    @abstractmethod
    async def end_operation(self, operation_id: UUID, ended_at: datetime) -> None:
        """Mark an active operation ended and every member row left/inactive"""

    @abstractmethod
    async def update_operation(
        self,
        operation_id: UUID,
        name: str,
        incident_number: Optional[str],
        updated_at: datetime
    ) -> None:
        ...

    @abstractmethod
    async def get_all_active_operations(self, user_id: UUID) -> List[Tuple[Operation, bool]]:
        """Active operations paired with whether the user is a current member"""

    @abstractmethod
    async def get_previous_operations(self, user_id: UUID) -> List[Operation]:
        """Ended operations the user took part in"""

    @abstractmethod
    async def get_draft_operations(self, user_id: UUID) -> List[Operation]:
        ...

    # ------------------------------------------------------------------
    # Targets & staging
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_target(
        self,
        operation_id: UUID,
        target_id: UUID,
        kind: OpTargetKind,
        fields: Dict[str, Any],
        images: List[Dict[str, Any]]
    ) -> UUID:
        ...

    @abstractmethod
    async def delete_target(self, target_id: UUID) -> None:
        """Delete a target; its images go with it"""

    @abstractmethod
    async def create_staging_point(
        self,
        operation_id: UUID,
        staging_id: UUID,
        label: str,
        address: str,
        lat: float,
        lng: float
    ) -> UUID:
        ...

    @abstractmethod
    async def delete_staging_point(self, staging_id: UUID) -> None:
        ...

    @abstractmethod
    async def get_operation_targets(self, operation_id: UUID) -> Tuple[List[OpTarget], List[StagingPoint]]:
        ...

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_member_records(self, operation_id: UUID) -> List[OperationMember]:
        """All membership rows, including members who left"""

    @abstractmethod
    async def get_operation_members(self, operation_id: UUID) -> List[User]:
        """Users holding a current membership"""

    @abstractmethod
    async def add_operation_members(self, operation_id: UUID, user_ids: List[UUID], joined_at: datetime) -> int:
        """Add users as plain members; returns how many rows were created"""

    @abstractmethod
    async def leave_operation(self, operation_id: UUID, user_id: UUID, left_at: datetime) -> None:
        ...

    @abstractmethod
    async def transfer_operation(self, operation_id: UUID, from_user_id: UUID, to_user_id: UUID) -> None:
        """Atomically demote from_user to member and promote to_user to case agent"""

    # ------------------------------------------------------------------
    # Invites & join requests
    # ------------------------------------------------------------------

    @abstractmethod
    async def invite_user(self, invite: OperationInvite) -> OperationInvite:
        ...

    @abstractmethod
    async def get_invite(self, invite_id: UUID) -> Optional[OperationInvite]:
        ...

    @abstractmethod
    async def find_invites(
        self,
        operation_id: Optional[UUID] = None,
        invitee_user_id: Optional[UUID] = None
    ) -> List[OperationInvite]:
        ...

    @abstractmethod
    async def accept_invite(self, invite_id: UUID, member: OperationMember, responded_at: datetime) -> None:
        """Mark a pending invite accepted and create the member row in one step"""

    @abstractmethod
    async def decline_invite(self, invite_id: UUID, responded_at: datetime) -> None:
        ...

    @abstractmethod
    async def request_join(self, request: JoinRequest) -> JoinRequest:
        ...

    @abstractmethod
    async def get_join_request(self, request_id: UUID) -> Optional[JoinRequest]:
        ...

    @abstractmethod
    async def find_join_requests(
        self,
        operation_id: UUID,
        requester_user_id: Optional[UUID] = None
    ) -> List[JoinRequest]:
        ...

    @abstractmethod
    async def approve_join(
        self,
        request_id: UUID,
        approve: bool,
        responded_by_user_id: UUID,
        responded_at: datetime,
        member: Optional[OperationMember] = None
    ) -> None:
        """Mark a pending request approved (creating the member row) or denied"""

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_assignment(self, assignment: AssignedLocation) -> AssignedLocation:
        ...

    @abstractmethod
    async def get_assignment(self, assignment_id: UUID) -> Optional[AssignedLocation]:
        ...

    @abstractmethod
    async def update_assignment(self, assignment: AssignedLocation, expected_status: AssignmentStatus) -> None:
        """Persist status and timestamps if the stored status is still expected_status"""

    @abstractmethod
    async def get_operation_assignments(self, operation_id: UUID) -> List[AssignedLocation]:
        ...

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_template(self, template: OperationTemplate) -> UUID:
        ...

    @abstractmethod
    async def get_template(self, template_id: UUID) -> Optional[OperationTemplate]:
        ...

    @abstractmethod
    async def get_templates(self, user_id: UUID, agency_id: UUID, scope: TemplateScope) -> List[OperationTemplate]:
        ...
