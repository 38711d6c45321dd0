"""
Driver Provisioner Services

Adapters for the identity service and profile store, and the provisioning,
deprovisioning and notification workflows built on them.
"""

from .deprovisioner import DriverDeprovisioner
from .email_sender import EmailSender
from .identity_gateway import IdentityErrorKind, IdentityGateway, IdentityGatewayError
from .notifier import CredentialSetupNotifier
from .profile_store import ProfileStore, ProfileStoreError
from .provisioner import DriverProvisioner

__all__ = [
    "CredentialSetupNotifier",
    "DriverDeprovisioner",
    "DriverProvisioner",
    "EmailSender",
    "IdentityErrorKind",
    "IdentityGateway",
    "IdentityGatewayError",
    "ProfileStore",
    "ProfileStoreError",
]
