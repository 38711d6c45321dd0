"""
Driver Provisioner Service

Creates or repairs a driver's identity and profile so that, however often the
call is repeated, exactly one identity and one profile exist for the email:

1. Create the identity (email confirmed, fixed metadata shape)
2. On conflict, find the existing identity by email (bounded search) and
   overwrite its credential and metadata
3. Upsert the profile keyed by the identity id
4. Run the credential-setup notification (never fails the call)

Partial success is allowed: if the profile write fails the identity is kept,
and re-running the call completes the profile through the conflict path.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from ..errors import (
    ConflictRepairFailure,
    IdentityServiceError,
    PermissionDeniedError,
    ProfileWriteError,
    ValidationError,
)
from ..models import (
    DriverProfile,
    ProvisionDriverRequest,
    ProvisionResult,
    driver_app_metadata,
)
from .identity_gateway import IdentityErrorKind, IdentityGateway, IdentityGatewayError
from .notifier import CredentialSetupNotifier
from .profile_store import ProfileStore, ProfileStoreError

logger = logging.getLogger(__name__)


class DriverProvisioner:
    """
    Reconciles a driver's identity and profile with a provisioning payload.

    Args:
        gateway: Identity service adapter
        profiles: Profile store adapter
        notifier: Optional credential-setup notifier; skipped when None
        search_page_size: Identities per page when searching by email
        search_max_pages: Maximum pages scanned when searching by email
        atomic_upsert: Use the store's single-request upsert for profiles
        distinguish_permission_errors: Raise PermissionDeniedError for
            'not permitted' identity failures instead of IdentityServiceError
    """

    def __init__(
        self,
        gateway: IdentityGateway,
        profiles: ProfileStore,
        notifier: Optional[CredentialSetupNotifier] = None,
        search_page_size: int = 1000,
        search_max_pages: int = 10,
        atomic_upsert: bool = True,
        distinguish_permission_errors: bool = True,
    ):
        self.gateway = gateway
        self.profiles = profiles
        self.notifier = notifier
        self.search_page_size = search_page_size
        self.search_max_pages = search_max_pages
        self.atomic_upsert = atomic_upsert
        self.distinguish_permission_errors = distinguish_permission_errors

    def provision(self, request: ProvisionDriverRequest) -> ProvisionResult:
        """
        Create or repair the driver's identity and profile.

        Returns:
            ProvisionResult with the identity id, profile id and credential link

        Raises:
            ValidationError: A required field is missing
            ConflictRepairFailure: The email is taken but no identity was found for it
            PermissionDeniedError: The identity service refused the operation
            IdentityServiceError: Any other identity service failure
            ProfileWriteError: The profile could not be written (identity kept)
        """
        missing = request.missing_fields()
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", missing_fields=missing
            )

        email = request.email.strip()
        logger.info(f"Provisioning driver {email}")

        identity_id, created = self._ensure_identity(email, request)
        profile, profile_created = self._upsert_profile(identity_id, email, request)

        link = None
        if self.notifier is not None:
            link = self.notifier.notify_credential_setup(email, request.fullName, identity_id)

        logger.info(
            f"Driver {email} provisioned: identity {identity_id} "
            f"({'created' if created else 'repaired'}), profile {profile.id} "
            f"({_profile_action(profile_created)})"
        )
        return ProvisionResult(
            identity_id=identity_id,
            profile_id=profile.id,
            email=email,
            password_reset_link=link,
            identity_created=created,
            profile_created=profile_created,
        )

    def _ensure_identity(self, email: str, request: ProvisionDriverRequest) -> Tuple[str, bool]:
        """Create the identity or repair the existing one. Returns (identity_id, created)."""
        user_metadata = request.identity_metadata()
        app_metadata = driver_app_metadata()

        try:
            identity = self.gateway.create_identity(
                email=email,
                password=request.password,
                user_metadata=user_metadata,
                app_metadata=app_metadata,
            )
            logger.info(f"Created identity {identity.id} for {email}")
            return identity.id, True
        except IdentityGatewayError as e:
            if e.kind == IdentityErrorKind.CONFLICT:
                logger.info(f"Identity for {email} already registered, repairing")
            elif e.kind == IdentityErrorKind.NOT_PERMITTED and self.distinguish_permission_errors:
                raise PermissionDeniedError(
                    "User not allowed - check identity service settings and service role key permissions",
                    details={"operation": "create_identity", "email": email, "reason": e.message},
                ) from e
            else:
                raise IdentityServiceError(
                    e.message or "Failed to create driver user",
                    details={"operation": "create_identity", "email": email},
                ) from e

        return self._repair_identity(email, request, user_metadata, app_metadata), False

    def _repair_identity(self, email, request, user_metadata, app_metadata) -> str:
        try:
            existing = self.gateway.find_by_email(
                email, page_size=self.search_page_size, max_pages=self.search_max_pages
            )
        except IdentityGatewayError as e:
            raise IdentityServiceError(
                e.message, details={"operation": "find_by_email", "email": email}
            ) from e

        if existing is None:
            raise ConflictRepairFailure("Driver user not found and could not be created")

        try:
            self.gateway.update_identity(
                existing.id,
                password=request.password,
                user_metadata=_replacing(existing.user_metadata, user_metadata),
                app_metadata=_replacing(existing.app_metadata, app_metadata),
            )
        except IdentityGatewayError as e:
            raise IdentityServiceError(
                e.message,
                details={"operation": "update_identity", "auth_user_id": existing.id},
            ) from e

        logger.info(f"Repaired identity {existing.id} for {email}")
        return existing.id

    def _upsert_profile(
        self, identity_id: str, email: str, request: ProvisionDriverRequest
    ) -> Tuple[DriverProfile, Optional[bool]]:
        """
        Insert or update the profile keyed by identity_id.

        Returns (profile, inserted); inserted is None for the atomic upsert,
        which does not report which branch the store took.
        """
        fields = request.profile_fields()
        fields["email"] = email

        try:
            if self.atomic_upsert:
                return self.profiles.upsert(identity_id, fields), None
            return self._read_then_write(identity_id, fields)
        except ProfileStoreError as e:
            logger.error(f"Profile write for identity {identity_id} failed: {e.message}")
            raise ProfileWriteError(
                f"Driver auth user saved but driver record could not be written: {e.message}",
                details={"auth_user_id": identity_id},
            ) from e

    def _read_then_write(self, identity_id: str, fields) -> Tuple[DriverProfile, bool]:
        if self.profiles.find_by_identity(identity_id) is not None:
            return self.profiles.update(identity_id, fields), False
        try:
            return self.profiles.insert(identity_id, fields), True
        except ProfileStoreError as e:
            if not e.is_unique_violation:
                raise
            # A concurrent call inserted the row between our read and insert
            logger.info(f"Profile for identity {identity_id} inserted concurrently, updating")
            return self.profiles.update(identity_id, fields), False


def _profile_action(inserted: Optional[bool]) -> str:
    if inserted is None:
        return "upserted"
    return "inserted" if inserted else "updated"


def _replacing(current: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build an admin update that replaces a metadata object.

    The Auth admin API merges metadata key by key and deletes keys sent as
    null, so every key outside the desired shape is sent as null.
    """
    update: Dict[str, Any] = {key: None for key in current if key not in desired}
    update.update(desired)
    return update
