"""Service modules - Business logic layer"""
from .notifier import ChangeNotifier
from .operation_service import OperationService
from .membership_service import MembershipService
from .assignment_service import AssignmentService
from .route_service import RouteService
from .realtime_service import RealtimeService
from .target_service import TargetEditSession
from .template_service import TemplateService
from .session import OperationSession

__all__ = [
    "ChangeNotifier",
    "OperationService",
    "MembershipService",
    "AssignmentService",
    "RouteService",
    "RealtimeService",
    "TargetEditSession",
    "TemplateService",
    "OperationSession",
]
