"""
Shared fixtures for Driver Provisioner tests.

Provides in-memory stand-ins for the Supabase Auth admin API and the drivers
table. They subclass the real adapters and replace only the transport, so the
bounded email search in IdentityGateway.find_by_email runs unchanged.
"""

import itertools
import threading
import uuid
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from driver_provisioner.models import DriverIdentity, DriverProfile, ProvisionDriverRequest
from driver_provisioner.services import (
    CredentialSetupNotifier,
    DriverDeprovisioner,
    DriverProvisioner,
    IdentityErrorKind,
    IdentityGateway,
    IdentityGatewayError,
    ProfileStore,
    ProfileStoreError,
)


def make_response(status_code: int, body: Any = None, text: str = "") -> Mock:
    """Build a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    if body is None:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.content = b"json"
        response.text = str(body)
        response.json.return_value = body
    return response


def merge_metadata(current: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply an admin metadata update: keys are merged and null deletes a key."""
    merged = dict(current)
    for key, value in changes.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class FakeIdentityGateway(IdentityGateway):
    """
    Thread-safe in-memory Auth admin API.

    Metadata updates follow the service: merged key by key, with null
    deleting a key.
    """

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.passwords: Dict[str, str] = {}
        self.failures: Dict[str, IdentityGatewayError] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fail(self, operation: str, message: str, kind: IdentityErrorKind) -> None:
        self.failures[operation] = IdentityGatewayError(message, kind=kind)

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def seed(self, email: str, password: str = "old", **metadata) -> str:
        identity_id = str(uuid.uuid4())
        self.users[identity_id] = {
            "id": identity_id,
            "email": email,
            "user_metadata": dict(metadata),
            "app_metadata": {},
        }
        self.passwords[identity_id] = password
        return identity_id

    def create_identity(self, email, password, user_metadata, app_metadata):
        self._check("create_identity")
        with self._lock:
            if any(u["email"].lower() == email.lower() for u in self.users.values()):
                raise IdentityGatewayError(
                    "A user with this email address has already been registered",
                    kind=IdentityErrorKind.CONFLICT,
                    status_code=422,
                    error_code="email_exists",
                )
            identity_id = str(uuid.uuid4())
            self.users[identity_id] = {
                "id": identity_id,
                "email": email,
                "user_metadata": dict(user_metadata),
                "app_metadata": dict(app_metadata),
            }
            self.passwords[identity_id] = password
            return DriverIdentity.model_validate(self.users[identity_id])

    def list_identities(self, page, per_page):
        self._check("list_identities")
        with self._lock:
            users = list(self.users.values())
        start = (page - 1) * per_page
        return [DriverIdentity.model_validate(u) for u in users[start:start + per_page]]

    def update_identity(self, identity_id, password=None, user_metadata=None, app_metadata=None):
        self._check("update_identity")
        with self._lock:
            user = self.users[identity_id]
            if password is not None:
                self.passwords[identity_id] = password
            if user_metadata is not None:
                user["user_metadata"] = merge_metadata(user["user_metadata"], user_metadata)
            if app_metadata is not None:
                user["app_metadata"] = merge_metadata(user["app_metadata"], app_metadata)
            return DriverIdentity.model_validate(user)

    def delete_identity(self, identity_id):
        self._check("delete_identity")
        with self._lock:
            if identity_id not in self.users:
                raise IdentityGatewayError(
                    "User not found", kind=IdentityErrorKind.NOT_FOUND, status_code=404
                )
            del self.users[identity_id]
            self.passwords.pop(identity_id, None)

    def generate_credential_link(self, email, redirect_to=None):
        self._check("generate_credential_link")
        return f"https://auth.example.com/verify?type=recovery&email={email}"

    def by_email(self, email: str) -> List[Dict[str, Any]]:
        return [u for u in self.users.values() if u["email"].lower() == email.lower()]


class FakeProfileStore(ProfileStore):
    """Thread-safe in-memory drivers table with a unique auth_user_id."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[str, ProfileStoreError] = {}
        self.calls: List[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def fail(self, operation: str, message: str = "boom", code: Optional[str] = None) -> None:
        self.failures[operation] = ProfileStoreError(message, status_code=500, code=code)

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def _by_identity(self, identity_id):
        for row in self.rows.values():
            if row["auth_user_id"] == identity_id:
                return row
        return None

    def seed(self, identity_id: Optional[str], **fields) -> str:
        profile_id = f"p{next(self._ids)}"
        self.rows[profile_id] = {"id": profile_id, "auth_user_id": identity_id, **fields}
        return profile_id

    def find_by_identity(self, identity_id):
        self._check("find_by_identity")
        with self._lock:
            row = self._by_identity(identity_id)
            return DriverProfile.model_validate(row) if row else None

    def get(self, profile_id):
        self._check("get_profile")
        with self._lock:
            row = self.rows.get(profile_id)
            return DriverProfile.model_validate(row) if row else None

    def insert(self, identity_id, fields):
        self._check("insert_profile")
        with self._lock:
            if self._by_identity(identity_id) is not None:
                raise ProfileStoreError(
                    "duplicate key value violates unique constraint",
                    status_code=409,
                    code="23505",
                )
            profile_id = f"p{next(self._ids)}"
            self.rows[profile_id] = {**fields, "id": profile_id, "auth_user_id": identity_id}
            return DriverProfile.model_validate(self.rows[profile_id])

    def update(self, identity_id, fields):
        self._check("update_profile")
        with self._lock:
            row = self._by_identity(identity_id)
            if row is None:
                raise ProfileStoreError(f"update_profile returned no row for {identity_id}")
            row.update(fields)
            return DriverProfile.model_validate(row)

    def upsert(self, identity_id, fields):
        self._check("upsert_profile")
        with self._lock:
            row = self._by_identity(identity_id)
            if row is None:
                profile_id = f"p{next(self._ids)}"
                row = self.rows[profile_id] = {"id": profile_id, "auth_user_id": identity_id}
            row.update(fields)
            return DriverProfile.model_validate(row)

    def delete_by_identity(self, identity_id):
        self._check("delete_profile")
        with self._lock:
            doomed = [pid for pid, row in self.rows.items() if row["auth_user_id"] == identity_id]
            for pid in doomed:
                del self.rows[pid]
            return len(doomed)

    def delete_by_id(self, profile_id):
        self._check("delete_profile")
        with self._lock:
            return 1 if self.rows.pop(profile_id, None) else 0

    def for_identity(self, identity_id: str) -> List[Dict[str, Any]]:
        return [row for row in self.rows.values() if row["auth_user_id"] == identity_id]


@pytest.fixture
def gateway():
    return FakeIdentityGateway()


@pytest.fixture
def profiles():
    return FakeProfileStore()


@pytest.fixture
def notifier(gateway):
    return CredentialSetupNotifier(gateway)


@pytest.fixture
def provisioner(gateway, profiles, notifier):
    return DriverProvisioner(gateway, profiles, notifier=notifier)


@pytest.fixture
def deprovisioner(gateway, profiles):
    return DriverDeprovisioner(gateway, profiles)


@pytest.fixture
def driver_payload():
    """Provisioning payload with all fields populated"""
    return ProvisionDriverRequest(
        email="d1@x.com",
        password="pw",
        fullName="A B",
        phone="+61 400 000 000",
        licenseNumber="L1",
        company="Acme Haulage",
        vehicle="Volvo FH16",
        registration="ABC-123",
    )


@pytest.fixture
def minimal_payload():
    """Provisioning payload with only the required fields"""
    return ProvisionDriverRequest(
        email="d1@x.com", password="pw", fullName="A B", licenseNumber="L1"
    )
