"""
Driver Account Models

Pydantic models for the provision/deprovision API payloads and for the records
held by the identity service (Supabase Auth users) and the profile store
(rows of the drivers table).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DRIVER_ROLE = "driver"
DRIVER_PROVIDERS = ["email", "driver"]

REQUIRED_PROVISION_FIELDS = ("email", "password", "fullName", "licenseNumber")


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class ProvisionDriverRequest(BaseModel):
    """
    Create-or-repair request for a driver account.

    Fields are all optional at parse time so that missing required fields are
    reported together as a validation failure rather than a schema error.
    """
    email: Optional[str] = None
    password: Optional[str] = None
    fullName: Optional[str] = None
    phone: Optional[str] = None
    licenseNumber: Optional[str] = None
    company: Optional[str] = None
    vehicle: Optional[str] = None
    registration: Optional[str] = None

    model_config = ConfigDict(
        coerce_numbers_to_str=True,
        json_schema_extra={
            "example": {
                "email": "d1@x.com",
                "password": "pw",
                "fullName": "A B",
                "phone": "+61 400 000 000",
                "licenseNumber": "L1",
                "company": "Acme Haulage",
                "vehicle": "Volvo FH16",
                "registration": "ABC-123",
            }
        }
    )

    def missing_fields(self) -> List[str]:
        """Return the required fields that are absent or blank, in request order."""
        return [name for name in REQUIRED_PROVISION_FIELDS if _blank(getattr(self, name))]

    def identity_metadata(self) -> Dict[str, Any]:
        """
        Build the fixed user_metadata shape stored on the identity.

        Optional fields are stored as null, and email_verified is always true.
        """
        return {
            "provider": DRIVER_ROLE,
            "role": DRIVER_ROLE,
            "full_name": self.fullName,
            "phone": self.phone or None,
            "license_number": self.licenseNumber,
            "company": self.company or None,
            "vehicle": self.vehicle or None,
            "registration": self.registration or None,
            "email_verified": True,
        }

    def profile_fields(self) -> Dict[str, Any]:
        """Descriptive columns of the driver profile row, minus the identity key."""
        return {
            "full_name": self.fullName,
            "email": self.email,
            "phone": self.phone or None,
            "license_number": self.licenseNumber,
            "company": self.company or None,
            "vehicle": self.vehicle or None,
            "registration": self.registration or None,
            "role": DRIVER_ROLE,
        }


class DeprovisionDriverRequest(BaseModel):
    """Delete request; at least one of the identifiers must be supplied."""
    auth_user_id: Optional[str] = None
    driver_id: Optional[str] = None

    model_config = ConfigDict(
        coerce_numbers_to_str=True,
        json_schema_extra={
            "example": {"driver_id": "5b0c7a34-2f4e-4d8e-9a55-0f3f0f7f8f11"}
        }
    )


def driver_app_metadata() -> Dict[str, Any]:
    """Provider/linking tag stored in the identity's app_metadata."""
    return {"provider": "email", "providers": list(DRIVER_PROVIDERS)}


class DriverIdentity(BaseModel):
    """A user record as returned by the Supabase Auth admin API."""
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    app_metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    def email_matches(self, email: str) -> bool:
        return (self.email or "").lower() == email.lower()


class DriverProfile(BaseModel):
    """A row of the drivers table."""
    id: Optional[str] = None
    auth_user_id: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None
    company: Optional[str] = None
    vehicle: Optional[str] = None
    registration: Optional[str] = None
    role: Optional[str] = DRIVER_ROLE

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


@dataclass
class ProvisionResult:
    """Outcome of a successful provisioning call."""
    identity_id: str
    profile_id: Optional[str]
    email: str
    password_reset_link: Optional[str] = None
    identity_created: bool = False
    profile_created: Optional[bool] = None


@dataclass
class DeprovisionResult:
    """Outcome of a successful deprovisioning call."""
    identity_id: Optional[str]
    profile_id: Optional[str]
    identity_deleted: bool = False


class ProvisionDriverResponse(BaseModel):
    success: bool = True
    auth_user_id: str
    driver_id: Optional[str] = None
    password_reset_link: Optional[str] = None
    user: Dict[str, Optional[str]]
    message: str = "Driver auth user created successfully"


class DeprovisionDriverResponse(BaseModel):
    success: bool = True
    message: str = "Driver and auth user deleted successfully"


class ErrorResponse(BaseModel):
    """Error body returned by both endpoints."""
    error: str
    error_type: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    missing_fields: Optional[List[str]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Missing required fields: email, password, fullName, licenseNumber",
                "error_type": "validation_error",
                "missing_fields": ["password"],
            }
        }
    )
