"""
Driver Provisioner Models Package

Pydantic models for driver identities, profiles and API payloads.
"""

from .driver import (
    DeprovisionDriverRequest,
    DeprovisionDriverResponse,
    DeprovisionResult,
    DriverIdentity,
    DriverProfile,
    ErrorResponse,
    ProvisionDriverRequest,
    ProvisionDriverResponse,
    ProvisionResult,
    DRIVER_ROLE,
    REQUIRED_PROVISION_FIELDS,
    driver_app_metadata,
)

__all__ = [
    "DeprovisionDriverRequest",
    "DeprovisionDriverResponse",
    "DeprovisionResult",
    "DriverIdentity",
    "DriverProfile",
    "ErrorResponse",
    "ProvisionDriverRequest",
    "ProvisionDriverResponse",
    "ProvisionResult",
    "DRIVER_ROLE",
    "REQUIRED_PROVISION_FIELDS",
    "driver_app_metadata",
]
