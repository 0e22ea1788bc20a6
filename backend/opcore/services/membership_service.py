"""Membership Service - Roster, invites, join requests and case agent transfer"""
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from ..config.settings import Settings, get_settings
from ..domain.models import (
    User, Operation, OperationMember, OperationInvite, JoinRequest
)
from ..domain.enums import (
    MemberRole, InviteStatus, JoinRequestStatus, TransitionEvent, ChangeKind
)
from ..domain.errors import (
    InvalidTransitionError, NotAuthorizedError, AlreadyMemberError,
    DuplicatePendingError, ExpiredError, NotAMemberError, NotCaseAgentError,
    IsCaseAgentError, OperationNotFoundError, InviteNotFoundError,
    JoinRequestNotFoundError, ValidationError
)
from ..engine.permission_guard import PermissionGuard
from ..engine.state_machine import (
    INVITE_MACHINE, JOIN_REQUEST_MACHINE, with_effective_status,
    is_effectively_pending
)
from ..repositories.remote_store import RemoteStore
from ..utils.time import Clock, utc_now
from ..utils.logger import get_logger
from .notifier import ChangeNotifier

logger = get_logger(__name__)


class MembershipService:
    """
    Service for who belongs to an operation

    Rules:
    - Exactly one current case agent per active operation; the role only
      moves through transfer_case_agent
    - At most one effectively pending invite per (operation, invitee) and one
      effectively pending join request per (operation, requester)
    - Invites and join requests past expires_at read as expired and are never
      acted upon, whatever the stored status
    - Ended operations accept no new invites, requests or members
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

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _open_operation(self, operation_id: UUID, action: str) -> Operation:
        operation = await self.store.get_operation(operation_id)
        if operation is None:
            raise OperationNotFoundError(
                f"Operation {operation_id} not found",
                details={"operation_id": str(operation_id)}
            )
        if operation.is_ended:
            raise InvalidTransitionError(
                f"Cannot {action} on an ended operation",
                details={"operation_id": str(operation_id), "current_state": operation.state.value}
            )
        return operation

    async def _ensure_not_member(self, operation_id: UUID, user_id: UUID) -> None:
        if await self.guard.is_member(operation_id, user_id):
            raise AlreadyMemberError(
                "User is already a member of this operation",
                details={"operation_id": str(operation_id), "user_id": str(user_id)}
            )

    def _new_member(self, operation_id: UUID, user_id: UUID) -> OperationMember:
        return OperationMember(
            operation_id=operation_id,
            user_id=user_id,
            role=MemberRole.MEMBER,
            joined_at=self.clock(),
        )

    # =========================================================================
    # Roster
    # =========================================================================

    async def get_roster(self, operation_id: UUID) -> List[OperationMember]:
        """Current members, case agent first"""
        members = await self.guard.active_members(operation_id)
        return sorted(members, key=lambda m: (not m.is_case_agent, m.joined_at))

    async def get_member_users(self, operation_id: UUID) -> List[User]:
        return await self.store.get_operation_members(operation_id)

    async def get_case_agent(self, operation_id: UUID) -> Optional[OperationMember]:
        return self.guard.case_agent_of(await self.guard.active_members(operation_id))

    async def add_members(self, operation_id: UUID, actor: User, user_ids: List[UUID]) -> int:
        """
        Add users directly as members

        Users who already hold a current membership are skipped.

        Returns:
            Number of members added
        """
        await self._open_operation(operation_id, "add members")
        members = await self.guard.require_case_agent(operation_id, actor, "add members")

        current = {m.user_id for m in members}
        to_add: List[UUID] = []
        for user_id in user_ids:
            if user_id not in current and user_id not in to_add:
                to_add.append(user_id)
        if not to_add:
            return 0

        count = await self.store.add_operation_members(operation_id, to_add, self.clock())
        logger.info(
            f"Added {count} members",
            extra={"operation_id": operation_id, "user_id": actor.id}
        )
        self.notifier.emit(ChangeKind.MEMBERSHIP_CHANGED, operation_id, added=[str(u) for u in to_add])
        return count

    async def remove_member(self, operation_id: UUID, actor: User, user_id: UUID) -> None:
        """Case agent removes another member"""
        members = await self.guard.require_case_agent(operation_id, actor, "remove members")
        membership = self.guard.membership_in(members, user_id)
        if membership is None:
            raise NotAMemberError(
                "User is not a member of this operation",
                details={"operation_id": str(operation_id), "user_id": str(user_id)}
            )
        if membership.is_case_agent:
            raise IsCaseAgentError(
                "The case agent cannot be removed",
                details={"operation_id": str(operation_id), "user_id": str(user_id)}
            )

        await self.store.leave_operation(operation_id, user_id, self.clock())
        logger.info(
            f"Removed member {user_id}",
            extra={"operation_id": operation_id, "user_id": actor.id}
        )
        self.notifier.emit(ChangeKind.MEMBERSHIP_CHANGED, operation_id, removed=str(user_id))

    async def leave_operation(self, operation_id: UUID, user: User) -> None:
        """
        Leave an operation

        Raises:
            NotAMemberError: If the user has no current membership
            IsCaseAgentError: If the user is the case agent (transfer first)
        """
        membership = await self.guard.membership_of(operation_id, user.id)
        if membership is None:
            raise NotAMemberError(
                "You are not a member of this operation",
                details={"operation_id": str(operation_id), "user_id": str(user.id)}
            )
        if membership.is_case_agent:
            raise IsCaseAgentError(
                "Transfer the case agent role before leaving",
                details={"operation_id": str(operation_id), "user_id": str(user.id)}
            )

        await self.store.leave_operation(operation_id, user.id, self.clock())
        logger.info("Member left operation", extra={"operation_id": operation_id, "user_id": user.id})
        self.notifier.emit(ChangeKind.MEMBERSHIP_CHANGED, operation_id, left=str(user.id))

    async def transfer_case_agent(self, operation_id: UUID, from_user: User, to_user_id: UUID) -> None:
        """
        Hand the case agent role to another current member

        The store demotes and promotes in one atomic step.

        Raises:
            NotCaseAgentError: If from_user is not the current case agent
            NotAMemberError: If to_user has no current membership
        """
        members = await self.guard.active_members(operation_id)
        case_agent = self.guard.case_agent_of(members)
        if case_agent is None or case_agent.user_id != from_user.id:
            raise NotCaseAgentError(
                "Only the current case agent can transfer the role",
                details={"operation_id": str(operation_id), "user_id": str(from_user.id)}
            )
        if to_user_id == from_user.id:
            raise ValidationError(
                "Cannot transfer the case agent role to yourself",
                details={"operation_id": str(operation_id), "user_id": str(to_user_id)}
            )
        if self.guard.membership_in(members, to_user_id) is None:
            raise NotAMemberError(
                "New case agent must be a current member",
                details={"operation_id": str(operation_id), "user_id": str(to_user_id)}
            )

        await self.store.transfer_operation(operation_id, from_user.id, to_user_id)
        logger.info(
            f"Transferred case agent to {to_user_id}",
            extra={"operation_id": operation_id, "user_id": from_user.id}
        )
        self.notifier.emit(
            ChangeKind.CASE_AGENT_TRANSFERRED,
            operation_id,
            from_user_id=str(from_user.id),
            to_user_id=str(to_user_id)
        )

    # =========================================================================
    # Invites
    # =========================================================================

    async def invite_user(
        self,
        operation_id: UUID,
        inviter: User,
        invitee_user_id: UUID,
        ttl: Optional[timedelta] = None
    ) -> OperationInvite:
        """
        Invite a user to the operation

        Raises:
            NotAuthorizedError: If the inviter is not a member
            AlreadyMemberError: If the invitee already joined
            DuplicatePendingError: If an unexpired pending invite exists
        """
        await self._open_operation(operation_id, "invite users")
        await self.guard.require_member(operation_id, inviter, "invite users")
        await self._ensure_not_member(operation_id, invitee_user_id)

        now = self.clock()
        existing = await self.store.find_invites(operation_id=operation_id, invitee_user_id=invitee_user_id)
        if any(is_effectively_pending(invite, now) for invite in existing):
            raise DuplicatePendingError(
                "A pending invite already exists for this user",
                details={"operation_id": str(operation_id), "user_id": str(invitee_user_id)}
            )

        invite = OperationInvite(
            operation_id=operation_id,
            inviter_user_id=inviter.id,
            invitee_user_id=invitee_user_id,
            created_at=now,
            expires_at=now + (ttl or self.settings.invite_ttl),
        )
        invite = await self.store.invite_user(invite)

        logger.info(
            f"Invited {invitee_user_id}",
            extra={"operation_id": operation_id, "user_id": inviter.id, "invite_id": invite.id}
        )
        self.notifier.emit(ChangeKind.INVITE_CHANGED, operation_id, invite_id=str(invite.id), status="pending")
        return invite

    async def get_invite(self, invite_id: UUID) -> OperationInvite:
        """Get an invite with its read-time status"""
        invite = await self.store.get_invite(invite_id)
        if invite is None:
            raise InviteNotFoundError(f"Invite {invite_id} not found", details={"invite_id": str(invite_id)})
        return with_effective_status(invite, self.clock())

    async def list_pending_invites(self, user: User) -> List[OperationInvite]:
        """Invites still awaiting the user's answer"""
        now = self.clock()
        invites = await self.store.find_invites(invitee_user_id=user.id)
        return [invite for invite in invites if is_effectively_pending(invite, now)]

    async def _respond_to_invite(self, invite_id: UUID, actor: User, event: TransitionEvent) -> OperationInvite:
        invite = await self.get_invite(invite_id)
        if invite.invitee_user_id != actor.id:
            raise NotAuthorizedError(
                "Only the invitee can respond to an invite",
                details={"invite_id": str(invite_id), "user_id": str(actor.id)}
            )
        if invite.status == InviteStatus.EXPIRED:
            raise ExpiredError(
                "Invite has expired",
                details={"invite_id": str(invite_id), "expires_at": invite.expires_at.isoformat()}
            )
        INVITE_MACHINE.resolve(invite.status, event)
        return invite

    async def accept_invite(self, invite_id: UUID, actor: User) -> OperationMember:
        """
        Accept an invite, joining as a member

        Raises:
            ExpiredError: If now is past expires_at
            InvalidTransitionError: If the invite was already answered
        """
        invite = await self._respond_to_invite(invite_id, actor, TransitionEvent.ACCEPT)
        await self._open_operation(invite.operation_id, "join")
        await self._ensure_not_member(invite.operation_id, actor.id)

        member = self._new_member(invite.operation_id, actor.id)
        await self.store.accept_invite(invite_id, member, self.clock())

        logger.info(
            "Invite accepted",
            extra={"operation_id": invite.operation_id, "user_id": actor.id, "invite_id": invite_id}
        )
        self.notifier.emit(ChangeKind.INVITE_CHANGED, invite.operation_id, invite_id=str(invite_id), status="accepted")
        self.notifier.emit(ChangeKind.MEMBERSHIP_CHANGED, invite.operation_id, added=[str(actor.id)])
        return member

    async def decline_invite(self, invite_id: UUID, actor: User) -> None:
        invite = await self._respond_to_invite(invite_id, actor, TransitionEvent.DECLINE)
        await self.store.decline_invite(invite_id, self.clock())

        logger.info(
            "Invite declined",
            extra={"operation_id": invite.operation_id, "user_id": actor.id, "invite_id": invite_id}
        )
        self.notifier.emit(ChangeKind.INVITE_CHANGED, invite.operation_id, invite_id=str(invite_id), status="declined")

    # =========================================================================
    # Join requests
    # =========================================================================

    async def request_join(self, operation_id: UUID, requester: User) -> JoinRequest:
        """
        Ask to join an operation

        Raises:
            AlreadyMemberError: If the requester already joined
            DuplicatePendingError: If an unexpired pending request exists
        """
        await self._open_operation(operation_id, "request to join")
        await self._ensure_not_member(operation_id, requester.id)

        now = self.clock()
        existing = await self.store.find_join_requests(operation_id, requester_user_id=requester.id)
        if any(is_effectively_pending(request, now) for request in existing):
            raise DuplicatePendingError(
                "A pending join request already exists",
                details={"operation_id": str(operation_id), "user_id": str(requester.id)}
            )

        request = JoinRequest(
            operation_id=operation_id,
            requester_user_id=requester.id,
            created_at=now,
            expires_at=now + self.settings.join_request_ttl,
        )
        request = await self.store.request_join(request)

        logger.info(
            "Join requested",
            extra={"operation_id": operation_id, "user_id": requester.id, "join_request_id": request.id}
        )
        self.notifier.emit(
            ChangeKind.JOIN_REQUEST_CHANGED, operation_id, join_request_id=str(request.id), status="pending"
        )
        return request

    async def get_join_request(self, request_id: UUID) -> JoinRequest:
        """Get a join request with its read-time status"""
        request = await self.store.get_join_request(request_id)
        if request is None:
            raise JoinRequestNotFoundError(
                f"Join request {request_id} not found",
                details={"join_request_id": str(request_id)}
            )
        return with_effective_status(request, self.clock())

    async def list_pending_join_requests(self, operation_id: UUID, actor: User) -> List[JoinRequest]:
        """Pending requests the case agent still has to answer"""
        await self.guard.require_case_agent(operation_id, actor, "view join requests")
        now = self.clock()
        requests = await self.store.find_join_requests(operation_id)
        return [request for request in requests if is_effectively_pending(request, now)]

    async def approve_join(self, request_id: UUID, actor: User, approve: bool) -> Optional[OperationMember]:
        """
        Approve or deny a join request

        Returns:
            The new member when approved, None when denied

        Raises:
            NotAuthorizedError: If the actor is not the case agent
            ExpiredError: If now is past expires_at
            InvalidTransitionError: If the request was already answered
        """
        request = await self.get_join_request(request_id)
        await self.guard.require_case_agent(request.operation_id, actor, "answer join requests")

        if request.status == JoinRequestStatus.EXPIRED:
            raise ExpiredError(
                "Join request has expired",
                details={"join_request_id": str(request_id), "expires_at": request.expires_at.isoformat()}
            )
        event = TransitionEvent.APPROVE if approve else TransitionEvent.DENY
        status = JOIN_REQUEST_MACHINE.resolve(request.status, event)

        member = None
        if approve:
            await self._open_operation(request.operation_id, "approve members")
            await self._ensure_not_member(request.operation_id, request.requester_user_id)
            member = self._new_member(request.operation_id, request.requester_user_id)

        await self.store.approve_join(request_id, approve, actor.id, self.clock(), member=member)

        logger.info(
            f"Join request {status.value}",
            extra={
                "operation_id": request.operation_id,
                "user_id": actor.id,
                "join_request_id": request_id,
                "status": status.value
            }
        )
        self.notifier.emit(
            ChangeKind.JOIN_REQUEST_CHANGED, request.operation_id,
            join_request_id=str(request_id), status=status.value
        )
        if member is not None:
            self.notifier.emit(
                ChangeKind.MEMBERSHIP_CHANGED, request.operation_id, added=[str(request.requester_user_id)]
            )
        return member
