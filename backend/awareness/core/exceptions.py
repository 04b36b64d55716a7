"""
Error taxonomy for the compliance core.

Every failure raised from a query or mutation is one of these. Each carries
an HTTP status so the API layer can translate it without a lookup table.
"""

from typing import Any, Dict, Iterable, Optional

from fastapi import status


class ComplianceError(Exception):
    """Base exception for compliance core errors."""

    code = "compliance_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for responses and logging."""
        payload = {
            "detail": self.message,
            "code": self.code,
            "status_code": self.status_code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthenticated(ComplianceError):
    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class UserNotFound(ComplianceError):
    """Identity is valid but no User record has been provisioned yet."""

    code = "user_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, subject: Optional[str] = None):
        super().__init__(
            "User not found; sync the account before using this operation",
            {"subject": subject} if subject else None,
        )


class Forbidden(ComplianceError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, required_roles: Iterable[Any] = (), message: Optional[str] = None):
        roles = sorted(getattr(role, "value", str(role)) for role in required_roles)
        self.required_roles = roles
        if message is None:
            message = f"Access denied. Required roles: {', '.join(roles)}"
        super().__init__(message, {"required_roles": roles} if roles else None)


class NotFound(ComplianceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        message = f"{resource} not found"
        super().__init__(message, {"resource": resource, "id": identifier} if identifier is not None else {"resource": resource})


class ConflictError(ComplianceError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class DuplicateActiveCertificate(ConflictError):
    code = "duplicate_active_certificate"

    def __init__(self, user_id: int, title: str):
        super().__init__(
            "User already has an active certification of this type",
            {"user_id": user_id, "title": title},
        )


class AlreadyAcknowledged(ConflictError):
    code = "already_acknowledged"

    def __init__(self, policy_id: int, version: str):
        super().__init__(
            "Policy already acknowledged",
            {"policy_id": policy_id, "version": version},
        )


class ValidationError(ComplianceError):
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
