"""Tests for the permission guard"""
from uuid import uuid4

import pytest

from opcore.domain.enums import MemberRole
from opcore.domain.errors import NotAuthorizedError
from opcore.domain.models import OperationMember
from opcore.engine.permission_guard import PermissionGuard


@pytest.fixture
def guard(store) -> PermissionGuard:
    return PermissionGuard(store)


def seed_members(store, operation_id, case_agent, member, clock):
    store.members.extend([
        OperationMember(operation_id=operation_id, user_id=case_agent.id, role=MemberRole.CASE_AGENT),
        OperationMember(operation_id=operation_id, user_id=member.id),
        OperationMember(operation_id=operation_id, user_id=uuid4(), left_at=clock.now),
    ])


class TestPermissionGuard:
    """Test role checks against stored membership rows"""

    @pytest.mark.asyncio
    async def test_require_case_agent(self, guard, store, case_agent, member, clock):
        op_id = uuid4()
        seed_members(store, op_id, case_agent, member, clock)

        members = await guard.require_case_agent(op_id, case_agent, "end the operation")
        assert len(members) == 2

        with pytest.raises(NotAuthorizedError) as exc_info:
            await guard.require_case_agent(op_id, member, "end the operation")
        assert exc_info.value.details["action"] == "end the operation"

    @pytest.mark.asyncio
    async def test_require_member(self, guard, store, case_agent, member, outsider, clock):
        op_id = uuid4()
        seed_members(store, op_id, case_agent, member, clock)

        assert (await guard.require_member(op_id, member, "invite users")).user_id == member.id
        with pytest.raises(NotAuthorizedError):
            await guard.require_member(op_id, outsider, "invite users")

    @pytest.mark.asyncio
    async def test_departed_members_do_not_count(self, guard, store, case_agent, member, clock):
        op_id = uuid4()
        seed_members(store, op_id, case_agent, member, clock)
        departed = store.members[-1]

        assert not await guard.is_member(op_id, departed.user_id)
        assert await guard.is_case_agent(op_id, case_agent.id)
        assert not await guard.is_case_agent(op_id, member.id)

    def test_case_agent_of_empty(self):
        assert PermissionGuard.case_agent_of([]) is None
