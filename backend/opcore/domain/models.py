"""Domain Models - Pydantic schemas for all entities"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from uuid import UUID
from pydantic import BaseModel, Field, EmailStr, ConfigDict

from .enums import (
    VehicleType, OperationState, MemberRole, InviteStatus, JoinRequestStatus,
    OpTargetKind, OpTargetStatus, ImageStorageKind, AssignmentStatus,
    EntityType, ReconcileAction, ReconcileOutcome, ChangeKind
)
from ..utils.idgen import generate_id
from ..utils.time import utc_now


# ============================================================================
# Identity (Agency / Team / User)
# ============================================================================

class Agency(BaseModel):
    """Top-level tenant"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: UUID = Field(default_factory=generate_id)
    name: str
    created_at: datetime = Field(default_factory=utc_now)


class Team(BaseModel):
    """Team within an agency (e.g. "Narcotics Unit")"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: UUID = Field(default_factory=generate_id)
    agency_id: UUID
    name: str
    created_at: datetime = Field(default_factory=utc_now)


class User(BaseModel):
    """A user; belongs to exactly one primary team and one agency"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: UUID = Field(default_factory=generate_id)
    email: EmailStr = Field(..., description="Login email")
    team_id: UUID = Field(..., description="Primary team")
    agency_id: UUID
    callsign: Optional[str] = None
    full_name: Optional[str] = None
    vehicle_type: VehicleType = VehicleType.SEDAN
    vehicle_color: str = Field("#0000FF", description="Hex color code")
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def display_name(self) -> str:
        return self.callsign or self.full_name or str(self.email)

    def belongs_to(self, team: Team, agency: Agency) -> bool:
        """Check the user sits in the given team and agency"""
        return (
            self.team_id == team.id
            and self.agency_id == agency.id
            and team.agency_id == agency.id
        )


# ============================================================================
# Operation & Membership
# ============================================================================

class Operation(BaseModel):
    """A surveillance operation"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    name: str
    incident_number: Optional[str] = None
    state: OperationState = OperationState.ACTIVE
    created_by_user_id: UUID = Field(..., description="Original creator; never changes")
    team_id: UUID
    agency_id: UUID
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @property
    def is_ended(self) -> bool:
        return self.state == OperationState.ENDED


class OperationMember(BaseModel):
    """Membership row, identified by (operation_id, user_id)"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    operation_id: UUID
    user_id: UUID
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime = Field(default_factory=utc_now)
    left_at: Optional[datetime] = None
    is_active: bool = Field(True, description="Currently publishing location")

    @property
    def is_current(self) -> bool:
        """Member has not left or been removed"""
        return self.left_at is None

    @property
    def is_case_agent(self) -> bool:
        return self.role == MemberRole.CASE_AGENT


class OperationInvite(BaseModel):
    """Invite from a member to another user"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    operation_id: UUID
    inviter_user_id: UUID
    invitee_user_id: UUID
    status: InviteStatus = InviteStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    responded_at: Optional[datetime] = None


class JoinRequest(BaseModel):
    """Request by a non-member to join an operation"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    operation_id: UUID
    requester_user_id: UUID
    status: JoinRequestStatus = JoinRequestStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    responded_at: Optional[datetime] = None
    responded_by_user_id: Optional[UUID] = None


class OperationsOverview(BaseModel):
    """What a user sees on the operations list"""
    active: List[Operation] = Field(default_factory=list)
    previous: List[Operation] = Field(default_factory=list)
    drafts: List[Operation] = Field(default_factory=list)
    member_operation_ids: Set[UUID] = Field(default_factory=set)

    def is_member_of(self, operation_id: UUID) -> bool:
        return operation_id in self.member_operation_ids


# ============================================================================
# Targets & Staging
# ============================================================================

class OpTargetImage(BaseModel):
    """Persistable description of an image that belongs to a target"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    storage_kind: ImageStorageKind
    local_path: Optional[str] = None
    remote_url: Optional[str] = None
    filename: str
    pixel_width: Optional[int] = Field(None, ge=0)
    pixel_height: Optional[int] = Field(None, ge=0)
    byte_size: Optional[int] = Field(None, ge=0)
    caption: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class OpTarget(BaseModel):
    """Person, vehicle or location of interest"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    kind: OpTargetKind
    label: str
    notes: Optional[str] = None
    status: OpTargetStatus = OpTargetStatus.PENDING

    # Person
    person_first_name: Optional[str] = None
    person_last_name: Optional[str] = None
    person_phone: Optional[str] = None

    # Vehicle
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_color: Optional[str] = None
    vehicle_plate: Optional[str] = None

    # Location
    location_name: Optional[str] = None
    location_address: Optional[str] = None
    location_lat: Optional[float] = Field(None, ge=-90, le=90)
    location_lng: Optional[float] = Field(None, ge=-180, le=180)

    images: List[OpTargetImage] = Field(default_factory=list)

    @classmethod
    def person(cls, name: Optional[str], phone: Optional[str] = None, **kwargs: Any) -> "OpTarget":
        """Person target; the name is split on the first space"""
        first, last = None, None
        if name:
            parts = name.split(" ")
            first = parts[0]
            last = " ".join(parts[1:]) or None
        return cls(
            kind=OpTargetKind.PERSON,
            label=name or "Unknown Person",
            person_first_name=first,
            person_last_name=last,
            person_phone=phone,
            **kwargs
        )

    @classmethod
    def vehicle(
        cls,
        make: Optional[str] = None,
        model: Optional[str] = None,
        color: Optional[str] = None,
        plate: Optional[str] = None,
        **kwargs: Any
    ) -> "OpTarget":
        """Vehicle target labelled "<color> <make> <model>", or by plate"""
        desc = " ".join(part for part in (color, make, model) if part)
        return cls(
            kind=OpTargetKind.VEHICLE,
            label=desc or plate or "Unknown Vehicle",
            vehicle_make=make,
            vehicle_model=model,
            vehicle_color=color,
            vehicle_plate=plate,
            **kwargs
        )

    @classmethod
    def location(
        cls,
        name: Optional[str] = None,
        address: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        **kwargs: Any
    ) -> "OpTarget":
        return cls(
            kind=OpTargetKind.LOCATION,
            label=name or address or "Unknown Location",
            location_name=name,
            location_address=address,
            location_lat=lat,
            location_lng=lng,
            **kwargs
        )

    @property
    def person_name(self) -> Optional[str]:
        if not self.person_first_name:
            return None
        if self.person_last_name:
            return f"{self.person_first_name} {self.person_last_name}".strip()
        return self.person_first_name

    @property
    def has_coordinates(self) -> bool:
        return self.location_lat is not None and self.location_lng is not None


class StagingPoint(BaseModel):
    """Meeting point or safe house; publishable only once geocoded"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    label: str
    address: str = ""
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


# ============================================================================
# Reconciliation results
# ============================================================================

class ReconcileItemResult(BaseModel):
    """Outcome of one create/delete call"""
    model_config = ConfigDict(extra="forbid")

    entity_type: EntityType
    entity_id: UUID
    action: ReconcileAction
    outcome: ReconcileOutcome
    label: Optional[str] = None
    error: Optional[str] = Field(None, description="Failure or skip reason")

    @property
    def ok(self) -> bool:
        return self.outcome == ReconcileOutcome.OK


class ReconcileResult(BaseModel):
    """Consolidated per-item outcome of a reconciliation batch"""
    operation_id: UUID
    correlation_id: Optional[str] = None
    items: List[ReconcileItemResult] = Field(default_factory=list)

    def _with(self, outcome: ReconcileOutcome) -> List[ReconcileItemResult]:
        return [item for item in self.items if item.outcome == outcome]

    @property
    def succeeded(self) -> List[ReconcileItemResult]:
        return self._with(ReconcileOutcome.OK)

    @property
    def failed(self) -> List[ReconcileItemResult]:
        return self._with(ReconcileOutcome.FAILED)

    @property
    def skipped(self) -> List[ReconcileItemResult]:
        return self._with(ReconcileOutcome.SKIPPED)

    @property
    def abandoned(self) -> List[ReconcileItemResult]:
        return self._with(ReconcileOutcome.ABANDONED)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed or self.abandoned)

    def outcome_for(self, entity_id: UUID) -> Optional[ReconcileItemResult]:
        for item in self.items:
            if item.entity_id == entity_id:
                return item
        return None


# ============================================================================
# Assignments & Routing
# ============================================================================

class AssignedLocation(BaseModel):
    """Location a case agent sent a member to"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    operation_id: UUID
    assigned_by_user_id: UUID
    assigned_to_user_id: UUID
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    label: Optional[str] = None
    notes: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    assigned_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in (AssignmentStatus.ASSIGNED, AssignmentStatus.EN_ROUTE)


class RouteStep(BaseModel):
    instruction: str
    distance_meters: float = 0.0


class RouteInfo(BaseModel):
    """Route computed by the routing oracle; display only"""
    assignment_id: UUID
    distance_meters: float
    duration_seconds: float
    polyline: Optional[str] = None
    steps: List[RouteStep] = Field(default_factory=list)
    summary: Optional[str] = None
    destination_lat: float
    destination_lng: float
    destination_label: Optional[str] = None
    calculated_at: datetime = Field(default_factory=utc_now)

    @property
    def next_instruction(self) -> Optional[str]:
        return self.steps[0].instruction if self.steps else None


class AssignmentProgress(BaseModel):
    """Derived distance/ETA values for an assignment banner"""
    assignment_id: UUID
    status: AssignmentStatus
    distance_text: str
    travel_time_text: str
    eta_text: str
    is_near: bool = False
    route_available: bool = False


# ============================================================================
# Live location & chat
# ============================================================================

class LocationPoint(BaseModel):
    """Single location sample from a member; never updated"""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: UUID = Field(default_factory=generate_id)
    user_id: UUID
    operation_id: UUID
    timestamp: datetime = Field(default_factory=utc_now)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(..., ge=0, description="Meters")
    speed: Optional[float] = Field(None, description="Meters per second")
    heading: Optional[float] = Field(None, description="Degrees, 0-360")


class MemberLocation(BaseModel):
    """Latest known position of a member"""
    user_id: UUID
    last_location: Optional[LocationPoint] = None
    is_active: bool = False
    last_update: Optional[datetime] = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    operation_id: UUID
    user_id: str
    content: str
    created_at: datetime
    user_name: Optional[str] = None
    media_path: Optional[str] = None
    media_type: str = "text"


# ============================================================================
# Templates
# ============================================================================

class TemplateTarget(BaseModel):
    """Target description stored in a template (no identity, no images)"""
    kind: OpTargetKind
    label: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class TemplateStagingPoint(BaseModel):
    label: str
    address: str = ""
    lat: float
    lng: float


class OperationTemplate(BaseModel):
    """Reusable set of targets and staging points"""
    model_config = ConfigDict(extra="ignore")

    id: UUID = Field(default_factory=generate_id)
    name: str
    description: Optional[str] = None
    is_public: bool = Field(False, description="Visible agency-wide")
    created_by_user_id: UUID
    agency_id: UUID
    targets: List[TemplateTarget] = Field(default_factory=list)
    staging: List[TemplateStagingPoint] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# Change notifications
# ============================================================================

class ChangeEvent(BaseModel):
    kind: ChangeKind
    operation_id: Optional[UUID] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)
