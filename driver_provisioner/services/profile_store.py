"""
Profile Store Service

Adapter over the PostgREST endpoint of the drivers table. Each driver profile
row is keyed by the identity id in auth_user_id, which carries a unique
constraint, so the store can upsert atomically on that column.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..models import DriverProfile

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class ProfileStoreError(Exception):
    """Failure reported by the profile store or the transport to it."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION or self.status_code == 409


class ProfileStore:
    """
    Driver profile persistence keyed by identity id.

    Example usage:
        store = ProfileStore(
            base_url="https://project.supabase.co",
            service_role_key="eyJ...",
            table="drivers"
        )
        profile = store.upsert("identity-id", {"full_name": "Jane Example", ...})
        store.delete_by_identity("identity-id")
    """

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        table: str = "drivers",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize ProfileStore.

        Args:
            base_url: Supabase project URL
            service_role_key: Service role JWT (bypasses row level security)
            table: Name of the driver profile table
            timeout: Timeout in seconds for each request
            session: Optional requests session to reuse
        """
        self.table_url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': service_role_key,
            'Authorization': f'Bearer {service_role_key}',
            'Content-Type': 'application/json',
        })

    def find_by_identity(self, identity_id: str) -> Optional[DriverProfile]:
        """Return the profile whose auth_user_id equals identity_id, if any."""
        rows = self._request(
            'GET',
            operation='find_by_identity',
            params={'auth_user_id': f'eq.{identity_id}', 'select': '*', 'limit': 1},
        )
        return DriverProfile.model_validate(rows[0]) if rows else None

    def get(self, profile_id: str) -> Optional[DriverProfile]:
        """Return the profile with the given row id, if any."""
        rows = self._request(
            'GET',
            operation='get_profile',
            params={'id': f'eq.{profile_id}', 'select': '*', 'limit': 1},
        )
        return DriverProfile.model_validate(rows[0]) if rows else None

    def insert(self, identity_id: str, fields: Dict[str, Any]) -> DriverProfile:
        """
        Insert a new profile row.

        Raises:
            ProfileStoreError: is_unique_violation when a row for identity_id exists
        """
        rows = self._request(
            'POST',
            operation='insert_profile',
            json={**fields, 'auth_user_id': identity_id},
            headers={'Prefer': 'return=representation'},
        )
        return self._single(rows, 'insert_profile', identity_id)

    def update(self, identity_id: str, fields: Dict[str, Any]) -> DriverProfile:
        """Overwrite the descriptive fields of the profile keyed by identity_id."""
        rows = self._request(
            'PATCH',
            operation='update_profile',
            params={'auth_user_id': f'eq.{identity_id}'},
            json=fields,
            headers={'Prefer': 'return=representation'},
        )
        return self._single(rows, 'update_profile', identity_id)

    def upsert(self, identity_id: str, fields: Dict[str, Any]) -> DriverProfile:
        """
        Insert or update the profile keyed by identity_id in one request.

        The unique constraint on auth_user_id resolves concurrent upserts for
        the same identity to a single row.
        """
        rows = self._request(
            'POST',
            operation='upsert_profile',
            params={'on_conflict': 'auth_user_id'},
            json={**fields, 'auth_user_id': identity_id},
            headers={'Prefer': 'resolution=merge-duplicates,return=representation'},
        )
        return self._single(rows, 'upsert_profile', identity_id)

    def delete_by_identity(self, identity_id: str) -> int:
        """Delete the profile keyed by identity_id. Returns the number of rows removed."""
        rows = self._request(
            'DELETE',
            operation='delete_profile',
            params={'auth_user_id': f'eq.{identity_id}'},
            headers={'Prefer': 'return=representation'},
        )
        return len(rows or [])

    def delete_by_id(self, profile_id: str) -> int:
        """Delete the profile with the given row id. Returns the number of rows removed."""
        rows = self._request(
            'DELETE',
            operation='delete_profile',
            params={'id': f'eq.{profile_id}'},
            headers={'Prefer': 'return=representation'},
        )
        return len(rows or [])

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def _single(rows: List[Dict[str, Any]], operation: str, identity_id: str) -> DriverProfile:
        if not rows:
            raise ProfileStoreError(f"{operation} returned no row for {identity_id}")
        return DriverProfile.model_validate(rows[0])

    def _request(
        self,
        method: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Send a request to the table endpoint and decode the returned rows.

        Raises:
            ProfileStoreError: On transport errors and non-2xx responses
        """
        try:
            response = self.session.request(
                method,
                self.table_url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Profile store {operation} failed: {e}")
            raise ProfileStoreError(f"Profile store unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get('message') or response.text or f"HTTP {response.status_code}"
            code = body.get('code')
            logger.error(
                f"Profile store {operation} failed: {response.status_code} {code or '-'} {message}"
            )
            raise ProfileStoreError(str(message), status_code=response.status_code, code=code)

        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Profile store {operation} returned a non-JSON body: {response.status_code}")
            raise ProfileStoreError(
                f"Profile store returned an unreadable response for {operation}",
                status_code=response.status_code,
            ) from e
        if isinstance(data, dict):
            return [data]
        return data
