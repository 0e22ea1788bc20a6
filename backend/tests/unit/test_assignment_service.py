"""Tests for assigned locations"""
import asyncio
from uuid import uuid4

import pytest
import pytest_asyncio

from opcore.domain.enums import AssignmentStatus, ChangeKind
from opcore.domain.errors import (
    NotAuthorizedError, InvalidTransitionError, NotAMemberError, AssignmentNotFoundError
)
from opcore.domain.models import LocationPoint, RouteInfo
from opcore.services.assignment_service import CALCULATING

POST_LAT, POST_LNG = 40.0, -75.0


@pytest_asyncio.fixture
async def operation(session, case_agent, member, team, agency):
    op = await session.operations.create_operation("Night Watch", case_agent, team, agency)
    await session.membership.add_members(op.id, case_agent, [member.id])
    return op


@pytest_asyncio.fixture
async def assignment(session, operation, case_agent, member):
    return await session.assignments.assign(
        operation.id, case_agent, member.id, POST_LAT, POST_LNG, label="Post 1"
    )


def location_at(member, operation, lat, lng=POST_LNG) -> LocationPoint:
    return LocationPoint(user_id=member.id, operation_id=operation.id, lat=lat, lng=lng, accuracy=5.0)


class TestAssign:
    """Test who may assign to whom"""

    @pytest.mark.asyncio
    async def test_assign(self, session, store, assignment, case_agent, member, clock):
        assert assignment.status == AssignmentStatus.ASSIGNED
        assert assignment.assigned_by_user_id == case_agent.id
        assert assignment.assigned_to_user_id == member.id
        assert assignment.assigned_at == clock.now
        assert store.assignments[assignment.id].label == "Post 1"

    @pytest.mark.asyncio
    async def test_only_case_agent_assigns(self, session, store, operation, member):
        with pytest.raises(NotAuthorizedError):
            await session.assignments.assign(operation.id, member, member.id, POST_LAT, POST_LNG)
        assert store.assignments == {}

    @pytest.mark.asyncio
    async def test_assignee_must_be_member(self, session, operation, case_agent, outsider):
        with pytest.raises(NotAMemberError):
            await session.assignments.assign(operation.id, case_agent, outsider.id, POST_LAT, POST_LNG)

    @pytest.mark.asyncio
    async def test_operation_must_be_active(self, session, case_agent, member, team, agency):
        draft = await session.operations.create_operation("Later", case_agent, team, agency, as_draft=True)
        await session.membership.add_members(draft.id, case_agent, [member.id])
        with pytest.raises(InvalidTransitionError):
            await session.assignments.assign(draft.id, case_agent, member.id, POST_LAT, POST_LNG)

    @pytest.mark.asyncio
    async def test_case_agent_may_assign_self(self, session, operation, case_agent):
        own = await session.assignments.assign(operation.id, case_agent, case_agent.id, POST_LAT, POST_LNG)
        assert own.assigned_to_user_id == case_agent.id


class TestTransitions:
    """Test acknowledge, arrive and cancel"""

    @pytest.mark.asyncio
    async def test_acknowledge_then_arrive(self, session, store, assignment, member, clock):
        events = []
        session.notifier.subscribe(events.append)

        clock.advance(minutes=1)
        en_route = await session.assignments.acknowledge(assignment.id, member)
        assert en_route.status == AssignmentStatus.EN_ROUTE
        assert en_route.acknowledged_at == clock.now

        clock.advance(minutes=9)
        arrived = await session.assignments.mark_arrived(assignment.id, member)
        assert arrived.status == AssignmentStatus.ARRIVED
        assert arrived.completed_at == clock.now
        assert store.assignments[assignment.id].status == AssignmentStatus.ARRIVED

        assert [(e.kind, e.payload["status"]) for e in events] == [
            (ChangeKind.ASSIGNMENT_CHANGED, "en_route"),
            (ChangeKind.ASSIGNMENT_CHANGED, "arrived"),
        ]

    @pytest.mark.asyncio
    async def test_only_assignee_acknowledges(self, session, assignment, case_agent):
        with pytest.raises(NotAuthorizedError):
            await session.assignments.acknowledge(assignment.id, case_agent)

    @pytest.mark.asyncio
    async def test_arrive_before_acknowledge(self, session, assignment, member):
        with pytest.raises(InvalidTransitionError):
            await session.assignments.mark_arrived(assignment.id, member)

    @pytest.mark.asyncio
    async def test_cancel_by_case_agent(self, session, assignment, case_agent):
        cancelled = await session.assignments.cancel(assignment.id, case_agent)
        assert cancelled.status == AssignmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_by_assignee_en_route(self, session, assignment, member):
        await session.assignments.acknowledge(assignment.id, member)
        cancelled = await session.assignments.cancel(assignment.id, member)
        assert cancelled.status == AssignmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_by_stranger(self, session, assignment, outsider):
        with pytest.raises(NotAuthorizedError):
            await session.assignments.cancel(assignment.id, outsider)

    @pytest.mark.asyncio
    async def test_acknowledge_racing_cancel(self, session, store, assignment, case_agent, member):
        store.delay("update_assignment", 0.05)

        results = await asyncio.gather(
            session.assignments.acknowledge(assignment.id, member),
            session.assignments.cancel(assignment.id, case_agent),
            return_exceptions=True
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert [type(e) for e in losers] == [InvalidTransitionError]
        assert store.assignments[assignment.id].status == winners[0].status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("finish", ["arrive", "cancel"])
    async def test_terminal_states(self, session, assignment, member, finish):
        await session.assignments.acknowledge(assignment.id, member)
        if finish == "arrive":
            await session.assignments.mark_arrived(assignment.id, member)
        else:
            await session.assignments.cancel(assignment.id, member)

        with pytest.raises(InvalidTransitionError):
            await session.assignments.acknowledge(assignment.id, member)
        with pytest.raises(InvalidTransitionError):
            await session.assignments.cancel(assignment.id, member)

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, session, member):
        with pytest.raises(AssignmentNotFoundError):
            await session.assignments.acknowledge(uuid4(), member)


class TestQueries:
    """Test listing and the active assignment lookup"""

    @pytest.mark.asyncio
    async def test_active_assignment_is_latest_open(self, session, operation, assignment, case_agent, member, clock):
        clock.advance(minutes=5)
        newer = await session.assignments.assign(operation.id, case_agent, member.id, 41.0, -74.0, label="Post 2")

        assert (await session.assignments.active_assignment_for(operation.id, member.id)).id == newer.id

        await session.assignments.cancel(newer.id, case_agent)
        assert (await session.assignments.active_assignment_for(operation.id, member.id)).id == assignment.id

        await session.assignments.cancel(assignment.id, case_agent)
        assert await session.assignments.active_assignment_for(operation.id, member.id) is None
        assert len(await session.assignments.list_assignments(operation.id)) == 2


class TestProgress:
    """Test derived distance and ETA text"""

    @pytest.mark.asyncio
    async def test_nothing_known(self, session, assignment):
        progress = session.assignments.progress_for(assignment)
        assert progress.distance_text == CALCULATING
        assert progress.travel_time_text == CALCULATING
        assert progress.eta_text == CALCULATING
        assert not progress.is_near
        assert not progress.route_available

    @pytest.mark.asyncio
    async def test_straight_line_below_a_kilometre(self, session, assignment, operation, member):
        # 0.005 degrees of latitude is about 556 m
        progress = session.assignments.progress_for(assignment, location_at(member, operation, POST_LAT + 0.005))
        assert progress.distance_text == "556 m"
        assert progress.eta_text == CALCULATING

    @pytest.mark.asyncio
    async def test_straight_line_in_kilometres(self, session, assignment, operation, member):
        # 0.0288 degrees of latitude is about 3.2 km
        progress = session.assignments.progress_for(assignment, location_at(member, operation, POST_LAT + 0.0288))
        assert progress.distance_text == "3.2 km"

    @pytest.mark.asyncio
    async def test_near_within_threshold(self, session, assignment, operation, member):
        progress = session.assignments.progress_for(assignment, location_at(member, operation, POST_LAT + 0.0003))
        assert progress.is_near

    @pytest.mark.asyncio
    async def test_route_wins_for_distance_and_eta(self, session, assignment, operation, member):
        route = RouteInfo(
            assignment_id=assignment.id,
            distance_meters=4300,
            duration_seconds=540,
            destination_lat=POST_LAT,
            destination_lng=POST_LNG,
        )
        progress = session.assignments.progress_for(
            assignment, location_at(member, operation, POST_LAT + 0.0288), route
        )
        assert progress.distance_text == "4.3 km"
        assert progress.travel_time_text == "9 min"
        assert progress.eta_text == "12:09 PM"
        assert progress.route_available
        assert not progress.is_near
