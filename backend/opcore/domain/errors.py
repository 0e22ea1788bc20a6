"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a serializable dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"


class MissingPreconditionError(ValidationError):
    """A required piece of context (e.g. the active operation id) is absent"""
    error_code = "MISSING_PRECONDITION"


# Authorization Errors
class NotAuthorizedError(DomainError):
    """Caller lacks the role required for the action"""
    error_code = "NOT_AUTHORIZED"


# State machine
class InvalidTransitionError(DomainError):
    """Action not valid for the current state"""
    error_code = "INVALID_TRANSITION"


# Membership workflow
class MembershipError(DomainError):
    """Membership workflow violation"""
    error_code = "MEMBERSHIP_ERROR"


class AlreadyMemberError(MembershipError):
    """User already holds an active membership"""
    error_code = "ALREADY_MEMBER"


class DuplicatePendingError(MembershipError):
    """A pending invite or join request already exists"""
    error_code = "DUPLICATE_PENDING"


class ExpiredError(MembershipError):
    """Invite or join request is past its expiry"""
    error_code = "EXPIRED"


class NotAMemberError(MembershipError):
    """User has no active membership in the operation"""
    error_code = "NOT_A_MEMBER"


class NotCaseAgentError(MembershipError):
    """User is not the operation's current case agent"""
    error_code = "NOT_CASE_AGENT"


class IsCaseAgentError(MembershipError):
    """Case agent must transfer the role first"""
    error_code = "IS_CASE_AGENT"


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"


class OperationNotFoundError(NotFoundError):
    error_code = "OPERATION_NOT_FOUND"


class InviteNotFoundError(NotFoundError):
    error_code = "INVITE_NOT_FOUND"


class JoinRequestNotFoundError(NotFoundError):
    error_code = "JOIN_REQUEST_NOT_FOUND"


class AssignmentNotFoundError(NotFoundError):
    error_code = "ASSIGNMENT_NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    error_code = "TEMPLATE_NOT_FOUND"


# External collaborators
class TransportError(DomainError):
    """Remote store or event bus call failed; passed through without retry"""
    error_code = "TRANSPORT_ERROR"
