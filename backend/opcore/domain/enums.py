"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class VehicleType(str, Enum):
    """Vehicle a field unit drives"""
    SEDAN = "sedan"
    SUV = "suv"
    PICKUP = "pickup"


class OperationState(str, Enum):
    """Operation lifecycle state"""
    DRAFT = "draft"    # Saved but not started
    ACTIVE = "active"
    ENDED = "ended"    # Terminal


class MemberRole(str, Enum):
    """Role of a member inside an operation"""
    CASE_AGENT = "case_agent"
    MEMBER = "member"


class InviteStatus(str, Enum):
    """Operation invite status"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class JoinRequestStatus(str, Enum):
    """Join request status"""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class OpTargetKind(str, Enum):
    """What a target describes"""
    PERSON = "person"
    VEHICLE = "vehicle"
    LOCATION = "location"


class OpTargetStatus(str, Enum):
    """Surveillance status of a target"""
    PENDING = "pending"  # Identified, not yet under surveillance
    ACTIVE = "active"
    CLEAR = "clear"


class ImageStorageKind(str, Enum):
    """Where the bytes of a target image live"""
    LOCAL_FILE = "local_file"
    REMOTE_URL = "remote_url"


class AssignmentStatus(str, Enum):
    """Assigned location status"""
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    CANCELLED = "cancelled"


class TransitionEvent(str, Enum):
    """Events that trigger state machine transitions"""
    # Operation
    START = "START"
    END = "END"
    # Invite / join request
    ACCEPT = "ACCEPT"
    DECLINE = "DECLINE"
    APPROVE = "APPROVE"
    DENY = "DENY"
    EXPIRE = "EXPIRE"
    # Assignment
    ACKNOWLEDGE = "ACKNOWLEDGE"
    ARRIVE = "ARRIVE"
    CANCEL = "CANCEL"


class EntityType(str, Enum):
    """Entity families handled by reconciliation"""
    TARGET = "target"
    STAGING_POINT = "staging_point"


class ReconcileAction(str, Enum):
    """Remote call issued for a reconciled entity"""
    CREATE = "create"
    DELETE = "delete"


class ReconcileOutcome(str, Enum):
    """Per-item result of a reconciliation batch"""
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"      # Never sent (e.g. staging point without coordinates)
    ABANDONED = "abandoned"  # Deadline expired before the call finished


class TemplateScope(str, Enum):
    """Which templates to list"""
    PERSONAL = "personal"
    AGENCY = "agency"


class ChangeKind(str, Enum):
    """Change notifications emitted to the presentation layer"""
    OPERATIONS_LOADED = "OPERATIONS_LOADED"
    OPERATION_CREATED = "OPERATION_CREATED"
    OPERATION_UPDATED = "OPERATION_UPDATED"
    OPERATION_STARTED = "OPERATION_STARTED"
    OPERATION_ENDED = "OPERATION_ENDED"
    MEMBERSHIP_CHANGED = "MEMBERSHIP_CHANGED"
    INVITE_CHANGED = "INVITE_CHANGED"
    JOIN_REQUEST_CHANGED = "JOIN_REQUEST_CHANGED"
    CASE_AGENT_TRANSFERRED = "CASE_AGENT_TRANSFERRED"
    TARGETS_RECONCILED = "TARGETS_RECONCILED"
    ASSIGNMENT_CHANGED = "ASSIGNMENT_CHANGED"
    LOCATION_RECEIVED = "LOCATION_RECEIVED"
    CHAT_MESSAGE_RECEIVED = "CHAT_MESSAGE_RECEIVED"
