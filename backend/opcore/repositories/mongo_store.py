"""Mongo Remote Store - RemoteStore backed by MongoDB through Motor"""
import functools
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple, Type, TypeVar
from uuid import UUID

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from . import async_mongo
from .remote_store import RemoteStore
from ..domain.enums import (
    OperationState, MemberRole, InviteStatus, JoinRequestStatus, AssignmentStatus, OpTargetKind,
    TemplateScope
)
from ..domain.errors import TransportError, InvalidTransitionError
from ..domain.models import (
    Operation, OperationMember, OperationInvite, JoinRequest, OpTarget,
    StagingPoint, AssignedLocation, OperationTemplate, User
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


# ============================================================================
# Document conversion
# ============================================================================

def to_document(model: BaseModel, **extra: Any) -> Dict[str, Any]:
    """Model -> Mongo document, keyed by the model id"""
    # Don't use mode="json" - it converts datetime to strings, breaking MongoDB sorting
    doc = model.model_dump()
    doc["_id"] = doc.pop("id")
    doc.update(extra)
    return doc


def from_document(model_cls: Type[M], doc: Optional[Dict[str, Any]]) -> Optional[M]:
    """Mongo document -> model; None passes through"""
    if doc is None:
        return None
    data = dict(doc)
    data["id"] = data.pop("_id")
    return model_cls.model_validate(data)


def target_document(
    operation_id: UUID,
    target_id: UUID,
    kind: OpTargetKind,
    fields: Dict[str, Any],
    images: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """Document for a target create; images are embedded and go with the target"""
    doc: Dict[str, Any] = dict(fields)
    doc.update({
        "_id": target_id,
        "operation_id": operation_id,
        "kind": kind.value,
        "images": list(images),
    })
    return doc


def transport_errors(func):
    """Re-raise driver errors as TransportError"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"Remote store call {func.__name__} failed: {e}")
            raise TransportError(
                f"Remote store call {func.__name__} failed",
                details={"call": func.__name__, "reason": str(e)}
            ) from e
    return wrapper


def require_matched(result, entity: str, entity_id: UUID, expected: str) -> None:
    """Raise when a conditional update found no document in the expected state"""
    if result.matched_count == 0:
        raise InvalidTransitionError(
            f"{entity} {entity_id} is no longer {expected}",
            details={"entity_id": str(entity_id), "entity_type": entity.lower(), "expected": expected}
        )


class MongoRemoteStore(RemoteStore):
    """
    RemoteStore on MongoDB

    Multi-document writes (end, accept, approve, transfer) run inside a
    transaction and therefore need a replica set deployment. State changes
    filter on the state they leave, so a concurrent caller that lost the race
    gets InvalidTransitionError and its transaction is rolled back.
    """

    def __init__(self, client: AsyncIOMotorClient, db: AsyncIOMotorDatabase):
        self._client = client
        self._db = db
        self._operations = db[async_mongo.OPERATIONS]
        self._members = db[async_mongo.OPERATION_MEMBERS]
        self._invites = db[async_mongo.OPERATION_INVITES]
        self._join_requests = db[async_mongo.JOIN_REQUESTS]
        self._targets = db[async_mongo.OP_TARGETS]
        self._staging = db[async_mongo.STAGING_POINTS]
        self._assignments = db[async_mongo.ASSIGNMENTS]
        self._templates = db[async_mongo.TEMPLATES]
        self._users = db[async_mongo.USERS]

    async def _find(self, collection, model_cls: Type[M], query: Dict[str, Any], sort=None) -> List[M]:
        cursor = collection.find(query)
        if sort:
            cursor = cursor.sort(sort)
        return [from_document(model_cls, doc) async for doc in cursor]

    # =========================================================================
    # Operations
    # =========================================================================

    @transport_errors
    async def create_operation(self, operation: Operation, case_agent: OperationMember) -> Operation:
        async with await self._client.start_session() as session:
            async with session.start_transaction():
                await self._operations.insert_one(to_document(operation), session=session)
                await self._members.insert_one(to_document(case_agent), session=session)

        logger.info(f"Created operation: {operation.id}", extra={"operation_id": operation.id})
        return operation

    @transport_errors
    async def get_operation(self, operation_id: UUID) -> Optional[Operation]:
        return from_document(Operation, await self._operations.find_one({"_id": operation_id}))

    @transport_errors
    async def start_operation(self, operation_id: UUID, started_at: datetime) -> None:
        result = await self._operations.update_one(
            {"_id": operation_id, "state": OperationState.DRAFT.value},
            {"$set": {
                "state": OperationState.ACTIVE.value,
                "starts_at": started_at,
                "updated_at": started_at,
            }}
        )
        require_matched(result, "Operation", operation_id, OperationState.DRAFT.value)
        logger.info(f"Started operation: {operation_id}", extra={"operation_id": operation_id})

    @transport_errors
    async def end_operation(self, operation_id: UUID, ended_at: datetime) -> None:
        async with await self._client.start_session() as session:
            async with session.start_transaction():
                result = await self._operations.update_one(
                    {"_id": operation_id, "state": OperationState.ACTIVE.value},
                    {"$set": {
                        "state": OperationState.ENDED.value,
                        "ends_at": ended_at,
                        "updated_at": ended_at,
                    }},
                    session=session
                )
                require_matched(result, "Operation", operation_id, OperationState.ACTIVE.value)
                await self._members.update_many(
                    {"operation_id": operation_id, "left_at": None},
                    {"$set": {"left_at": ended_at, "is_active": False}},
                    session=session
                )

        logger.info(f"Ended operation: {operation_id}", extra={"operation_id": operation_id})

    @transport_errors
    async def update_operation(
        self,
        operation_id: UUID,
        name: str,
        incident_number: Optional[str],
        updated_at: datetime
    ) -> None:
        await self._operations.update_one(
            {"_id": operation_id},
            {"$set": {"name": name, "incident_number": incident_number, "updated_at": updated_at}}
        )

    async def _member_operation_ids(self, user_id: UUID, current_only: bool) -> Set[UUID]:
        query: Dict[str, Any] = {"user_id": user_id}
        if current_only:
            query["left_at"] = None
        return set(await self._members.distinct("operation_id", query))

    @transport_errors
    async def get_all_active_operations(self, user_id: UUID) -> List[Tuple[Operation, bool]]:
        operations = await self._find(
            self._operations, Operation,
            {"state": OperationState.ACTIVE.value},
            sort=[("created_at", DESCENDING)]
        )
        member_of = await self._member_operation_ids(user_id, current_only=True)
        return [(op, op.id in member_of) for op in operations]

    @transport_errors
    async def get_previous_operations(self, user_id: UUID) -> List[Operation]:
        took_part = await self._member_operation_ids(user_id, current_only=False)
        return await self._find(
            self._operations, Operation,
            {"state": OperationState.ENDED.value, "_id": {"$in": list(took_part)}},
            sort=[("ends_at", DESCENDING)]
        )

    @transport_errors
    async def get_draft_operations(self, user_id: UUID) -> List[Operation]:
        return await self._find(
            self._operations, Operation,
            {"state": OperationState.DRAFT.value, "created_by_user_id": user_id},
            sort=[("created_at", DESCENDING)]
        )

    # =========================================================================
    # Targets & staging
    # =========================================================================

    @transport_errors
    async def create_target(
        self,
        operation_id: UUID,
        target_id: UUID,
        kind: OpTargetKind,
        fields: Dict[str, Any],
        images: List[Dict[str, Any]]
    ) -> UUID:
        await self._targets.insert_one(target_document(operation_id, target_id, kind, fields, images))
        logger.info(
            f"Created target: {target_id}",
            extra={"operation_id": operation_id, "entity_id": target_id}
        )
        return target_id

    @transport_errors
    async def delete_target(self, target_id: UUID) -> None:
        await self._targets.delete_one({"_id": target_id})
        logger.info(f"Deleted target: {target_id}", extra={"entity_id": target_id})

    @transport_errors
    async def create_staging_point(
        self,
        operation_id: UUID,
        staging_id: UUID,
        label: str,
        address: str,
        lat: float,
        lng: float
    ) -> UUID:
        await self._staging.insert_one({
            "_id": staging_id,
            "operation_id": operation_id,
            "label": label,
            "address": address,
            "lat": lat,
            "lng": lng,
        })
        logger.info(
            f"Created staging point: {staging_id}",
            extra={"operation_id": operation_id, "entity_id": staging_id}
        )
        return staging_id

    @transport_errors
    async def delete_staging_point(self, staging_id: UUID) -> None:
        await self._staging.delete_one({"_id": staging_id})
        logger.info(f"Deleted staging point: {staging_id}", extra={"entity_id": staging_id})

    @transport_errors
    async def get_operation_targets(self, operation_id: UUID) -> Tuple[List[OpTarget], List[StagingPoint]]:
        targets = await self._find(self._targets, OpTarget, {"operation_id": operation_id})
        staging = await self._find(self._staging, StagingPoint, {"operation_id": operation_id})
        return targets, staging

    # =========================================================================
    # Membership
    # =========================================================================

    @transport_errors
    async def get_member_records(self, operation_id: UUID) -> List[OperationMember]:
        return await self._find(
            self._members, OperationMember,
            {"operation_id": operation_id},
            sort=[("joined_at", ASCENDING)]
        )

    @transport_errors
    async def get_operation_members(self, operation_id: UUID) -> List[User]:
        user_ids = await self._members.distinct("user_id", {"operation_id": operation_id, "left_at": None})
        return await self._find(self._users, User, {"_id": {"$in": user_ids}})

    @transport_errors
    async def add_operation_members(self, operation_id: UUID, user_ids: List[UUID], joined_at: datetime) -> int:
        if not user_ids:
            return 0
        docs = [
            to_document(OperationMember(
                operation_id=operation_id,
                user_id=user_id,
                role=MemberRole.MEMBER,
                joined_at=joined_at,
            ))
            for user_id in user_ids
        ]
        result = await self._members.insert_many(docs)
        return len(result.inserted_ids)

    @transport_errors
    async def leave_operation(self, operation_id: UUID, user_id: UUID, left_at: datetime) -> None:
        await self._members.update_one(
            {"operation_id": operation_id, "user_id": user_id, "left_at": None},
            {"$set": {"left_at": left_at, "is_active": False}}
        )
        logger.info(
            f"User {user_id} left operation {operation_id}",
            extra={"operation_id": operation_id, "user_id": user_id}
        )

    @transport_errors
    async def transfer_operation(self, operation_id: UUID, from_user_id: UUID, to_user_id: UUID) -> None:
        async with await self._client.start_session() as session:
            async with session.start_transaction():
                demoted = await self._members.update_one(
                    {"operation_id": operation_id, "user_id": from_user_id,
                     "left_at": None, "role": MemberRole.CASE_AGENT.value},
                    {"$set": {"role": MemberRole.MEMBER.value}},
                    session=session
                )
                promoted = await self._members.update_one(
                    {"operation_id": operation_id, "user_id": to_user_id, "left_at": None},
                    {"$set": {"role": MemberRole.CASE_AGENT.value}},
                    session=session
                )
                if demoted.modified_count != 1 or promoted.modified_count != 1:
                    # Raising inside the block aborts the transaction
                    raise TransportError(
                        "Case agent transfer rejected by the store",
                        details={
                            "operation_id": str(operation_id),
                            "from_user_id": str(from_user_id),
                            "to_user_id": str(to_user_id),
                        }
                    )

        logger.info(
            f"Transferred case agent of {operation_id} from {from_user_id} to {to_user_id}",
            extra={"operation_id": operation_id, "user_id": to_user_id}
        )

    # =========================================================================
    # Invites & join requests
    # =========================================================================

    @transport_errors
    async def invite_user(self, invite: OperationInvite) -> OperationInvite:
        await self._invites.insert_one(to_document(invite))
        logger.info(
            f"Created invite: {invite.id}",
            extra={"operation_id": invite.operation_id, "invite_id": invite.id}
        )
        return invite

    @transport_errors
    async def get_invite(self, invite_id: UUID) -> Optional[OperationInvite]:
        return from_document(OperationInvite, await self._invites.find_one({"_id": invite_id}))

    @transport_errors
    async def find_invites(
        self,
        operation_id: Optional[UUID] = None,
        invitee_user_id: Optional[UUID] = None
    ) -> List[OperationInvite]:
        query: Dict[str, Any] = {}
        if operation_id is not None:
            query["operation_id"] = operation_id
        if invitee_user_id is not None:
            query["invitee_user_id"] = invitee_user_id
        return await self._find(self._invites, OperationInvite, query, sort=[("created_at", DESCENDING)])

    @transport_errors
    async def accept_invite(self, invite_id: UUID, member: OperationMember, responded_at: datetime) -> None:
        async with await self._client.start_session() as session:
            async with session.start_transaction():
                result = await self._invites.update_one(
                    {"_id": invite_id, "status": InviteStatus.PENDING.value},
                    {"$set": {"status": InviteStatus.ACCEPTED.value, "responded_at": responded_at}},
                    session=session
                )
                require_matched(result, "Invite", invite_id, InviteStatus.PENDING.value)
                await self._members.insert_one(to_document(member), session=session)

        logger.info(
            f"Accepted invite: {invite_id}",
            extra={"operation_id": member.operation_id, "invite_id": invite_id, "user_id": member.user_id}
        )

    @transport_errors
    async def decline_invite(self, invite_id: UUID, responded_at: datetime) -> None:
        result = await self._invites.update_one(
            {"_id": invite_id, "status": InviteStatus.PENDING.value},
            {"$set": {"status": InviteStatus.DECLINED.value, "responded_at": responded_at}}
        )
        require_matched(result, "Invite", invite_id, InviteStatus.PENDING.value)

    @transport_errors
    async def request_join(self, request: JoinRequest) -> JoinRequest:
        await self._join_requests.insert_one(to_document(request))
        logger.info(
            f"Created join request: {request.id}",
            extra={"operation_id": request.operation_id, "join_request_id": request.id}
        )
        return request

    @transport_errors
    async def get_join_request(self, request_id: UUID) -> Optional[JoinRequest]:
        return from_document(JoinRequest, await self._join_requests.find_one({"_id": request_id}))

    @transport_errors
    async def find_join_requests(
        self,
        operation_id: UUID,
        requester_user_id: Optional[UUID] = None
    ) -> List[JoinRequest]:
        query: Dict[str, Any] = {"operation_id": operation_id}
        if requester_user_id is not None:
            query["requester_user_id"] = requester_user_id
        return await self._find(self._join_requests, JoinRequest, query, sort=[("created_at", DESCENDING)])

    @transport_errors
    async def approve_join(
        self,
        request_id: UUID,
        approve: bool,
        responded_by_user_id: UUID,
        responded_at: datetime,
        member: Optional[OperationMember] = None
    ) -> None:
        status = JoinRequestStatus.APPROVED if approve else JoinRequestStatus.DENIED
        async with await self._client.start_session() as session:
            async with session.start_transaction():
                result = await self._join_requests.update_one(
                    {"_id": request_id, "status": JoinRequestStatus.PENDING.value},
                    {"$set": {
                        "status": status.value,
                        "responded_at": responded_at,
                        "responded_by_user_id": responded_by_user_id,
                    }},
                    session=session
                )
                require_matched(result, "Join request", request_id, JoinRequestStatus.PENDING.value)
                if approve and member is not None:
                    await self._members.insert_one(to_document(member), session=session)

        logger.info(
            f"Join request {request_id} {status.value}",
            extra={"join_request_id": request_id, "status": status.value}
        )

    # =========================================================================
    # Assignments
    # =========================================================================

    @transport_errors
    async def create_assignment(self, assignment: AssignedLocation) -> AssignedLocation:
        await self._assignments.insert_one(to_document(assignment))
        logger.info(
            f"Created assignment: {assignment.id}",
            extra={"operation_id": assignment.operation_id, "assignment_id": assignment.id}
        )
        return assignment

    @transport_errors
    async def get_assignment(self, assignment_id: UUID) -> Optional[AssignedLocation]:
        return from_document(AssignedLocation, await self._assignments.find_one({"_id": assignment_id}))

    @transport_errors
    async def update_assignment(self, assignment: AssignedLocation, expected_status: AssignmentStatus) -> None:
        result = await self._assignments.update_one(
            {"_id": assignment.id, "status": expected_status.value},
            {"$set": {
                "status": assignment.status.value,
                "updated_at": assignment.updated_at,
                "acknowledged_at": assignment.acknowledged_at,
                "completed_at": assignment.completed_at,
            }}
        )
        require_matched(result, "Assignment", assignment.id, expected_status.value)

    @transport_errors
    async def get_operation_assignments(self, operation_id: UUID) -> List[AssignedLocation]:
        return await self._find(
            self._assignments, AssignedLocation,
            {"operation_id": operation_id},
            sort=[("assigned_at", DESCENDING)]
        )

    # =========================================================================
    # Templates
    # =========================================================================

    @transport_errors
    async def save_template(self, template: OperationTemplate) -> UUID:
        await self._templates.insert_one(to_document(template))
        logger.info(f"Saved template: {template.id}", extra={"user_id": template.created_by_user_id})
        return template.id

    @transport_errors
    async def get_template(self, template_id: UUID) -> Optional[OperationTemplate]:
        return from_document(OperationTemplate, await self._templates.find_one({"_id": template_id}))

    @transport_errors
    async def get_templates(self, user_id: UUID, agency_id: UUID, scope: TemplateScope) -> List[OperationTemplate]:
        if scope == TemplateScope.PERSONAL:
            query: Dict[str, Any] = {"created_by_user_id": user_id}
        else:
            query = {"agency_id": agency_id, "is_public": True}
        return await self._find(self._templates, OperationTemplate, query, sort=[("created_at", DESCENDING)])

    # =========================================================================
    # Users (read-only identity inputs)
    # =========================================================================

    @transport_errors
    async def upsert_user(self, user: User) -> None:
        """Seed or refresh a user record"""
        doc = to_document(user)
        await self._users.replace_one({"_id": doc["_id"]}, doc, upsert=True)
