"""Tests for the Mongo store's document mapping and error translation"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from opcore.domain.enums import OperationState, OpTargetKind, AssignmentStatus
from opcore.domain.errors import TransportError, InvalidTransitionError
from opcore.domain.models import Operation, AssignedLocation
from opcore.repositories.mongo_store import (
    MongoRemoteStore, to_document, from_document, target_document, transport_errors
)


def make_operation() -> Operation:
    return Operation(name="Night Watch", created_by_user_id=uuid4(), team_id=uuid4(), agency_id=uuid4())


@pytest.fixture
def collections():
    return {}


@pytest.fixture
def mongo_store(collections) -> MongoRemoteStore:
    def collection(name):
        return collections.setdefault(name, MagicMock(name=name))

    db = MagicMock()
    db.__getitem__.side_effect = collection
    return MongoRemoteStore(MagicMock(), db)


class TestDocuments:
    """Test model <-> document mapping"""

    def test_id_becomes_underscore_id(self):
        operation = make_operation()
        doc = to_document(operation)

        assert doc["_id"] == operation.id
        assert "id" not in doc
        assert doc["state"] == OperationState.ACTIVE
        assert doc["created_at"] == operation.created_at

    def test_extra_fields(self):
        doc = to_document(make_operation(), archived=False)
        assert doc["archived"] is False

    def test_from_document(self):
        operation = make_operation()
        assert from_document(Operation, to_document(operation)) == operation
        assert from_document(Operation, None) is None

    def test_target_document_embeds_images(self):
        op_id, target_id = uuid4(), uuid4()
        images = [{"id": "img-1", "filename": "a.jpg"}]

        doc = target_document(op_id, target_id, OpTargetKind.PERSON, {"label": "John"}, images)

        assert doc == {
            "_id": target_id,
            "operation_id": op_id,
            "kind": "person",
            "label": "John",
            "images": images,
        }


class TestTransportErrors:
    """Test driver errors surface as TransportError"""

    @pytest.mark.asyncio
    async def test_decorator_wraps_driver_errors(self):
        @transport_errors
        async def lookup():
            raise ServerSelectionTimeoutError("no servers")

        with pytest.raises(TransportError) as exc_info:
            await lookup()
        assert exc_info.value.details["call"] == "lookup"
        assert isinstance(exc_info.value.__cause__, ServerSelectionTimeoutError)

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(self):
        @transport_errors
        async def lookup():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await lookup()

    @pytest.mark.asyncio
    async def test_store_call(self, mongo_store, collections):
        operations = collections.setdefault("operations", MagicMock())
        operations.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))

        with pytest.raises(TransportError):
            await mongo_store.get_operation(uuid4())


class TestStoreCalls:
    """Test the queries and updates sent to collections"""

    @pytest.mark.asyncio
    async def test_get_operation(self, mongo_store, collections):
        operation = make_operation()
        collections["operations"].find_one = AsyncMock(return_value=to_document(operation))

        assert await mongo_store.get_operation(operation.id) == operation
        collections["operations"].find_one.assert_awaited_once_with({"_id": operation.id})

    @pytest.mark.asyncio
    async def test_update_assignment_sets_status_fields(self, mongo_store, collections):
        assignment = AssignedLocation(
            operation_id=uuid4(), assigned_by_user_id=uuid4(), assigned_to_user_id=uuid4(), lat=1.0, lng=2.0
        )
        en_route = assignment.model_copy(update={"status": AssignmentStatus.EN_ROUTE})
        collections["assigned_locations"].update_one = AsyncMock(return_value=MagicMock(matched_count=1))

        await mongo_store.update_assignment(en_route, expected_status=AssignmentStatus.ASSIGNED)

        query, update = collections["assigned_locations"].update_one.await_args.args
        assert query == {"_id": assignment.id, "status": "assigned"}
        assert update["$set"]["status"] == "en_route"

    @pytest.mark.asyncio
    async def test_update_assignment_lost_race(self, mongo_store, collections):
        assignment = AssignedLocation(
            operation_id=uuid4(), assigned_by_user_id=uuid4(), assigned_to_user_id=uuid4(), lat=1.0, lng=2.0
        )
        collections["assigned_locations"].update_one = AsyncMock(return_value=MagicMock(matched_count=0))

        with pytest.raises(InvalidTransitionError) as exc_info:
            await mongo_store.update_assignment(assignment, expected_status=AssignmentStatus.ASSIGNED)
        assert exc_info.value.details["expected"] == "assigned"

    @pytest.mark.asyncio
    async def test_start_operation_only_from_draft(self, mongo_store, collections):
        op_id = uuid4()
        collections["operations"].update_one = AsyncMock(return_value=MagicMock(matched_count=0))

        with pytest.raises(InvalidTransitionError):
            await mongo_store.start_operation(op_id, datetime(2024, 5, 1, tzinfo=timezone.utc))

        query, _ = collections["operations"].update_one.await_args.args
        assert query == {"_id": op_id, "state": "draft"}

    @pytest.mark.asyncio
    async def test_upsert_user(self, mongo_store, collections, case_agent):
        collections["users"].replace_one = AsyncMock()

        await mongo_store.upsert_user(case_agent)

        query, doc = collections["users"].replace_one.await_args.args
        assert query == {"_id": case_agent.id}
        assert doc["callsign"] == "Alpha-1"
        assert collections["users"].replace_one.await_args.kwargs == {"upsert": True}
