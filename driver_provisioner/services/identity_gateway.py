"""
Identity Gateway Service

Thin adapter over the Supabase Auth admin API. Creates, finds, updates and
deletes driver identities and generates credential-setup links.

Every failure is raised as IdentityGatewayError with an explicit
IdentityErrorKind. The classification prefers the HTTP status and the
service's error_code; substring matching on the message is the last resort
and lives only here.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from ..models import DriverIdentity

logger = logging.getLogger(__name__)


class IdentityErrorKind(str, Enum):
    """How an identity service failure should be handled by callers."""
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    NOT_PERMITTED = "not_permitted"
    TRANSIENT = "transient"
    OTHER = "other"


CONFLICT_CODES = {"email_exists", "user_already_exists", "phone_exists"}
NOT_FOUND_CODES = {"user_not_found"}
NOT_PERMITTED_CODES = {"not_admin", "no_authorization", "bad_jwt", "signup_disabled"}

CONFLICT_MARKERS = ("already registered", "already been registered", "already exists")
NOT_PERMITTED_MARKERS = ("not allowed", "permission", "not authorized")
NOT_FOUND_MARKERS = ("not found",)


class IdentityGatewayError(Exception):
    """Classified failure from the identity service."""

    def __init__(
        self,
        message: str,
        kind: IdentityErrorKind = IdentityErrorKind.OTHER,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.error_code = error_code


def classify_failure(
    status_code: Optional[int], error_code: Optional[str], message: str
) -> IdentityErrorKind:
    """
    Map an identity service failure to an IdentityErrorKind.

    Args:
        status_code: HTTP status of the response, None for transport failures
        error_code: Machine-readable error_code from the body, if any
        message: Human-readable message from the body

    Returns:
        IdentityErrorKind for the failure
    """
    if error_code in CONFLICT_CODES:
        return IdentityErrorKind.CONFLICT
    if error_code in NOT_FOUND_CODES:
        return IdentityErrorKind.NOT_FOUND
    if error_code in NOT_PERMITTED_CODES:
        return IdentityErrorKind.NOT_PERMITTED

    if status_code == 409:
        return IdentityErrorKind.CONFLICT
    if status_code == 404:
        return IdentityErrorKind.NOT_FOUND
    if status_code in (401, 403):
        return IdentityErrorKind.NOT_PERMITTED
    if status_code is None or status_code == 429 or status_code >= 500:
        return IdentityErrorKind.TRANSIENT

    # Older Auth releases only report these as text
    lowered = (message or "").lower()
    if any(marker in lowered for marker in CONFLICT_MARKERS):
        return IdentityErrorKind.CONFLICT
    if any(marker in lowered for marker in NOT_PERMITTED_MARKERS):
        return IdentityErrorKind.NOT_PERMITTED
    if any(marker in lowered for marker in NOT_FOUND_MARKERS):
        return IdentityErrorKind.NOT_FOUND

    return IdentityErrorKind.OTHER


class IdentityGateway:
    """
    Supabase Auth admin API client for driver identities.

    Example usage:
        gateway = IdentityGateway(
            base_url="https://project.supabase.co",
            service_role_key="eyJ..."
        )
        identity = gateway.create_identity(
            email="d1@x.com",
            password="pw",
            user_metadata={...},
            app_metadata={...}
        )
    """

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize IdentityGateway.

        Args:
            base_url: Supabase project URL (e.g., 'https://project.supabase.co')
            service_role_key: Service role JWT with admin rights
            timeout: Timeout in seconds for each request
            session: Optional requests session to reuse
        """
        self.admin_url = f"{base_url.rstrip('/')}/auth/v1/admin"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': service_role_key,
            'Authorization': f'Bearer {service_role_key}',
            'Content-Type': 'application/json',
        })

    def create_identity(
        self,
        email: str,
        password: str,
        user_metadata: Dict[str, Any],
        app_metadata: Dict[str, Any],
    ) -> DriverIdentity:
        """
        Create a confirmed identity.

        Raises:
            IdentityGatewayError: kind CONFLICT when the email is already registered
        """
        payload = {
            'email': email,
            'password': password,
            'email_confirm': True,
            'user_metadata': user_metadata,
            'app_metadata': app_metadata,
        }
        data = self._request('POST', '/users', operation='create_identity', json=payload)
        return DriverIdentity.model_validate(self._unwrap_user(data))

    def list_identities(self, page: int, per_page: int) -> List[DriverIdentity]:
        """Return one page of identities (pages start at 1)."""
        data = self._request(
            'GET',
            '/users',
            operation='list_identities',
            params={'page': page, 'per_page': per_page},
        )
        users = data.get('users', []) if isinstance(data, dict) else data
        return [DriverIdentity.model_validate(user) for user in users or []]

    def find_by_email(
        self, email: str, page_size: int = 1000, max_pages: int = 10
    ) -> Optional[DriverIdentity]:
        """
        Locate an identity by email with a bounded linear scan.

        The Auth admin API has no lookup-by-email, so pages are scanned in
        ascending order from 1. The scan stops on a case-insensitive match, on
        a short page (end of data), or after max_pages pages.

        Args:
            email: Email to match, compared case-insensitively
            page_size: Identities requested per page
            max_pages: Upper bound on pages scanned

        Returns:
            The matching DriverIdentity or None
        """
        for page in range(1, max_pages + 1):
            identities = self.list_identities(page=page, per_page=page_size)

            for identity in identities:
                if identity.email_matches(email):
                    logger.info(f"Found identity {identity.id} for {email} on page {page}")
                    return identity

            if len(identities) < page_size:
                return None

        logger.warning(f"No identity for {email} within {max_pages} pages of {page_size}")
        return None

    def update_identity(
        self,
        identity_id: str,
        password: Optional[str] = None,
        user_metadata: Optional[Dict[str, Any]] = None,
        app_metadata: Optional[Dict[str, Any]] = None,
    ) -> DriverIdentity:
        """Overwrite the credential and metadata of an existing identity."""
        payload: Dict[str, Any] = {}
        if password is not None:
            payload['password'] = password
        if user_metadata is not None:
            payload['user_metadata'] = user_metadata
        if app_metadata is not None:
            payload['app_metadata'] = app_metadata

        data = self._request(
            'PUT', f'/users/{identity_id}', operation='update_identity', json=payload
        )
        return DriverIdentity.model_validate(self._unwrap_user(data))

    def delete_identity(self, identity_id: str) -> None:
        """
        Delete an identity.

        Raises:
            IdentityGatewayError: kind NOT_FOUND when the identity is already gone
        """
        self._request('DELETE', f'/users/{identity_id}', operation='delete_identity')

    def generate_credential_link(
        self, email: str, redirect_to: Optional[str] = None
    ) -> str:
        """
        Generate a single-use, time-limited password setup (recovery) link.

        Returns:
            The action link URL
        """
        payload: Dict[str, Any] = {'type': 'recovery', 'email': email}
        if redirect_to:
            payload['redirect_to'] = redirect_to

        data = self._request(
            'POST', '/generate_link', operation='generate_credential_link', json=payload
        )
        link = None
        if isinstance(data, dict):
            link = data.get('action_link') or (data.get('properties') or {}).get('action_link')
        if not link:
            raise IdentityGatewayError(
                f"No action link returned for {email}", kind=IdentityErrorKind.OTHER
            )
        return link

    def check_admin_access(self) -> None:
        """Fetch a single identity to confirm the admin API accepts our key."""
        self.list_identities(page=1, per_page=1)

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def _unwrap_user(data: Any) -> Dict[str, Any]:
        # Some Auth versions wrap the record as {"user": {...}}
        if isinstance(data, dict) and isinstance(data.get('user'), dict):
            return data['user']
        return data

    def _request(self, method: str, path: str, operation: str, **kwargs) -> Any:
        """
        Send a request to the admin API and decode the JSON body.

        Raises:
            IdentityGatewayError: On transport errors and non-2xx responses
        """
        url = f"{self.admin_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Identity service {operation} failed: {e}")
            raise IdentityGatewayError(
                f"Identity service unreachable: {e}", kind=IdentityErrorKind.TRANSIENT
            ) from e

        if response.status_code >= 400:
            body = self._error_body(response)
            message = (
                body.get('msg')
                or body.get('message')
                or body.get('error_description')
                or body.get('error')
                or response.text
                or f"HTTP {response.status_code}"
            )
            error_code = body.get('error_code')
            kind = classify_failure(response.status_code, error_code, str(message))
            logger.error(
                f"Identity service {operation} failed: {response.status_code} "
                f"{error_code or '-'} {message}"
            )
            raise IdentityGatewayError(
                str(message),
                kind=kind,
                status_code=response.status_code,
                error_code=error_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error(
                f"Identity service {operation} returned a non-JSON body: {response.status_code}"
            )
            raise IdentityGatewayError(
                f"Identity service returned an unreadable response for {operation}",
                kind=IdentityErrorKind.OTHER,
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _error_body(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
