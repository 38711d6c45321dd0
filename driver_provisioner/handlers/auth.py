"""
Internal token authentication handler for the Driver Provisioner.

This module provides the FastAPI dependency that authenticates callers of the
provisioning endpoints with a shared secret sent in the x-internal-token
header. The check is only enforced when INTERNAL_API_TOKEN is configured.
"""

import secrets
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from ..config import ProvisionerSettings, require_settings


def verify_internal_token(
    settings: Annotated[ProvisionerSettings, Depends(require_settings)],
    x_internal_token: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """
    Verify the x-internal-token header against the configured shared secret.

    Args:
        settings: Application settings
        x_internal_token: Value of the x-internal-token request header

    Returns:
        The verified token, or None when no token is configured

    Raises:
        HTTPException: 401 Unauthorized if the token is missing or doesn't match

    Example:
        @app.post("/api/create-driver-auth-user", dependencies=[Depends(verify_internal_token)])
        async def create_driver(...):
            # Caller is already verified by dependency
            pass
    """
    expected_token = settings.internal_api_token

    # No shared secret configured: the host environment is trusted to gate access
    if not expected_token:
        return None

    if not x_internal_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Internal token missing",
        )

    # Constant-time comparison
    if not secrets.compare_digest(expected_token.encode(), x_internal_token.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )

    return x_internal_token
