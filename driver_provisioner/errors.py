"""
Error taxonomy for the Driver Provisioner.

Every failure a provisioning or deprovisioning call can report is a
ProvisioningError subclass carrying the HTTP status and the error_type
classification the API returns to callers.
"""

from typing import Any, Dict, List, Optional


class ProvisioningError(Exception):
    """Base class for classified provisioning failures."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        """Build the JSON error body for this failure."""
        body: Dict[str, Any] = {
            "error": self.message,
            "error_type": self.error_type,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ProvisioningError):
    """Missing or malformed input. Never retried."""

    status_code = 400
    error_type = "validation_error"

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_fields = missing_fields or []

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        if self.missing_fields:
            body["missing_fields"] = self.missing_fields
        return body


class NotFoundError(ProvisioningError):
    status_code = 404
    error_type = "not_found"


class ConflictRepairFailure(NotFoundError):
    """Identity creation reported a conflict but the existing identity could not be located."""

    error_type = "conflict_repair_failure"


class PermissionDeniedError(ProvisioningError):
    """The identity service rejected the operation as not allowed."""

    error_type = "permission_denied"


class IdentityServiceError(ProvisioningError):
    error_type = "identity_service_error"


class ProfileWriteError(ProvisioningError):
    """
    Profile upsert failed after the identity was created or repaired.

    The identity is left in place; re-running the same provisioning call
    reaches it through the conflict-repair path and completes the profile.
    """

    error_type = "profile_write_error"


class ProfileDeleteError(ProvisioningError):
    error_type = "profile_delete_error"


class IdentityDeleteError(ProvisioningError):
    """Profile is gone but the identity could not be deleted; needs manual reconciliation."""

    error_type = "identity_delete_error"


class ConfigurationError(ProvisioningError):
    """Required settings are missing or invalid."""

    error_type = "configuration_error"
