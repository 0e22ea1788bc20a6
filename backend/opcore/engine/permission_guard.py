"""Permission Guard - Authorization enforcement for operation actions"""
from typing import List, Optional
from uuid import UUID

from ..domain.models import OperationMember, User
from ..domain.errors import NotAuthorizedError
from ..repositories.remote_store import RemoteStore
from ..utils.logger import get_logger

logger = get_logger(__name__)


class PermissionGuard:
    """
    Permission enforcement for operation state

    Rules:
    - The case agent is the single current member with role case_agent
    - Only the case agent may end the operation, approve/deny join requests,
      remove members, transfer the role and create assignments
    - Any current member may invite, leave (unless case agent) and act on
      their own assignments
    """

    def __init__(self, store: RemoteStore):
        self._store = store

    async def active_members(self, operation_id: UUID) -> List[OperationMember]:
        """Membership rows that have not left"""
        records = await self._store.get_member_records(operation_id)
        return [m for m in records if m.is_current]

    @staticmethod
    def case_agent_of(members: List[OperationMember]) -> Optional[OperationMember]:
        case_agents = [m for m in members if m.is_current and m.is_case_agent]
        if len(case_agents) > 1:
            # Two case agents means the store broke the transfer contract
            logger.error(
                f"Found {len(case_agents)} case agents",
                extra={"operation_id": case_agents[0].operation_id}
            )
        return case_agents[0] if case_agents else None

    @staticmethod
    def membership_in(members: List[OperationMember], user_id: UUID) -> Optional[OperationMember]:
        for member in members:
            if member.user_id == user_id and member.is_current:
                return member
        return None

    async def membership_of(self, operation_id: UUID, user_id: UUID) -> Optional[OperationMember]:
        return self.membership_in(await self.active_members(operation_id), user_id)

    async def is_member(self, operation_id: UUID, user_id: UUID) -> bool:
        return await self.membership_of(operation_id, user_id) is not None

    async def is_case_agent(self, operation_id: UUID, user_id: UUID) -> bool:
        case_agent = self.case_agent_of(await self.active_members(operation_id))
        return case_agent is not None and case_agent.user_id == user_id

    async def require_case_agent(
        self,
        operation_id: UUID,
        actor: User,
        action: str
    ) -> List[OperationMember]:
        """
        Ensure the actor is the current case agent

        Returns:
            The operation's current members, for callers that need them

        Raises:
            NotAuthorizedError: If the actor is not the case agent
        """
        members = await self.active_members(operation_id)
        case_agent = self.case_agent_of(members)
        if case_agent is None or case_agent.user_id != actor.id:
            logger.info(
                f"Action {action} denied: not the case agent",
                extra={"operation_id": operation_id, "user_id": actor.id, "action": action}
            )
            raise NotAuthorizedError(
                f"Only the case agent may {action}",
                details={"operation_id": str(operation_id), "user_id": str(actor.id), "action": action}
            )
        return members

    async def require_member(self, operation_id: UUID, actor: User, action: str) -> OperationMember:
        """
        Ensure the actor holds a current membership

        Raises:
            NotAuthorizedError: If the actor is not a member
        """
        membership = await self.membership_of(operation_id, actor.id)
        if membership is None:
            logger.info(
                f"Action {action} denied: not a member",
                extra={"operation_id": operation_id, "user_id": actor.id, "action": action}
            )
            raise NotAuthorizedError(
                f"Only operation members may {action}",
                details={"operation_id": str(operation_id), "user_id": str(actor.id), "action": action}
            )
        return membership
