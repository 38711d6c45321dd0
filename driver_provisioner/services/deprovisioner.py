"""
Driver Deprovisioner Service

Removes a driver's profile and identity together. The profile goes first so
that no profile is ever left pointing at a deleted identity; an identity that
is already gone is not an error.
"""

import logging
from typing import Optional

from ..errors import IdentityDeleteError, NotFoundError, ProfileDeleteError, ValidationError
from ..models import DeprovisionDriverRequest, DeprovisionResult
from .identity_gateway import IdentityErrorKind, IdentityGateway, IdentityGatewayError
from .profile_store import ProfileStore, ProfileStoreError

logger = logging.getLogger(__name__)


class DriverDeprovisioner:
    """Deletes driver profiles and identities in a fixed order."""

    def __init__(self, gateway: IdentityGateway, profiles: ProfileStore):
        self.gateway = gateway
        self.profiles = profiles

    def deprovision(self, request: DeprovisionDriverRequest) -> DeprovisionResult:
        """
        Delete the driver's profile, then the identity.

        Args:
            request: auth_user_id and/or driver_id; at least one is required

        Returns:
            DeprovisionResult; identity_deleted is False when the identity was
            already absent

        Raises:
            ValidationError: Neither identifier given
            NotFoundError: driver_id given but no profile (or no linked identity) found
            ProfileDeleteError: The profile could not be deleted
            IdentityDeleteError: Profile deleted but the identity delete failed
        """
        identity_id = _clean(request.auth_user_id)
        profile_id = _clean(request.driver_id)

        if not identity_id and not profile_id:
            raise ValidationError(
                "Missing required field: auth_user_id or driver_id",
                missing_fields=["auth_user_id", "driver_id"],
            )

        if not identity_id:
            identity_id = self._resolve_identity(profile_id)

        self._delete_profile(identity_id, profile_id)

        identity_deleted = False
        if identity_id:
            identity_deleted = self._delete_identity(identity_id)

        logger.info(
            f"Deprovisioned driver: identity {identity_id or '-'}, profile {profile_id or '-'}"
        )
        return DeprovisionResult(
            identity_id=identity_id,
            profile_id=profile_id,
            identity_deleted=identity_deleted,
        )

    def _resolve_identity(self, profile_id: str) -> str:
        try:
            profile = self.profiles.get(profile_id)
        except ProfileStoreError as e:
            raise ProfileDeleteError(
                f"Failed to look up driver record: {e.message}",
                details={"operation": "get_profile", "driver_id": profile_id},
            ) from e

        if profile is None or not profile.auth_user_id:
            logger.warning(f"Driver {profile_id} not found or has no auth user")
            raise NotFoundError("Driver not found")
        return profile.auth_user_id

    def _delete_profile(self, identity_id: Optional[str], profile_id: Optional[str]) -> None:
        try:
            if identity_id:
                removed = self.profiles.delete_by_identity(identity_id)
            else:
                removed = self.profiles.delete_by_id(profile_id)
        except ProfileStoreError as e:
            raise ProfileDeleteError(
                f"Failed to delete driver record: {e.message}",
                details={"auth_user_id": identity_id, "driver_id": profile_id},
            ) from e

        if not removed:
            logger.info(f"No driver record to delete for identity {identity_id or profile_id}")

    def _delete_identity(self, identity_id: str) -> bool:
        try:
            self.gateway.delete_identity(identity_id)
        except IdentityGatewayError as e:
            if e.kind == IdentityErrorKind.NOT_FOUND:
                logger.info(f"Identity {identity_id} already deleted")
                return False
            logger.error(
                f"Driver record deleted but identity {identity_id} remains; manual cleanup needed"
            )
            raise IdentityDeleteError(
                f"Driver record deleted but failed to delete auth user: {e.message}",
                details={"auth_user_id": identity_id},
            ) from e
        return True


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
