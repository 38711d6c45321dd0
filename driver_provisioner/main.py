"""
Driver Provisioner - Main FastAPI Application

This FastAPI application provisions and deprovisions driver accounts for the
transport-operations product. Each driver has one Supabase Auth identity and
one row in the drivers table; both endpoints are idempotent and safe to retry
after a partial failure.

Endpoints:
- GET /health - Health check
- POST /api/create-driver-auth-user - Create or repair a driver identity and profile
- POST /api/delete-driver-auth-user - Delete a driver profile and identity
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Iterator, Optional

from fastapi import Body, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as SettingsValidationError
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ProvisionerSettings, get_settings, require_settings
from .errors import ProvisioningError
from .handlers import verify_internal_token
from .models import (
    DeprovisionDriverRequest,
    DeprovisionDriverResponse,
    ProvisionDriverRequest,
    ProvisionDriverResponse,
)
from .services import (
    CredentialSetupNotifier,
    DriverDeprovisioner,
    DriverProvisioner,
    EmailSender,
    IdentityGateway,
    IdentityGatewayError,
    ProfileStore,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

PROVISION_PATH = "/api/create-driver-auth-user"
DEPROVISION_PATH = "/api/delete-driver-auth-user"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Apply the configured log level; a bad configuration is reported per request."""
    logger.info("Starting Driver Provisioner...")
    try:
        settings = get_settings()
        logging.getLogger().setLevel(settings.log_level)
        logger.info("Driver Provisioner settings loaded")
    except SettingsValidationError as e:
        logger.error(f"Driver Provisioner settings invalid; requests will fail until fixed: {e}")
    yield


# FastAPI app initialization
app = FastAPI(
    title="Driver Provisioner",
    description="Provisions and deprovisions driver identities and profiles",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


class EmptyPreflightCORSMiddleware(CORSMiddleware):
    """Answers accepted preflight requests with the CORS headers and an empty body."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != status.HTTP_200_OK:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)


# Desktop clients call with a null origin
app.add_middleware(
    EmptyPreflightCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "x-internal-token"],
)


def build_identity_gateway(settings: ProvisionerSettings) -> IdentityGateway:
    return IdentityGateway(
        base_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        timeout=settings.http_timeout_seconds,
    )


def get_identity_gateway(
    settings: Annotated[ProvisionerSettings, Depends(require_settings)],
) -> Iterator[IdentityGateway]:
    """Per-request identity gateway; its HTTP session is closed after the response."""
    gateway = build_identity_gateway(settings)
    try:
        yield gateway
    finally:
        gateway.close()


def get_profile_store(
    settings: Annotated[ProvisionerSettings, Depends(require_settings)],
) -> Iterator[ProfileStore]:
    store = ProfileStore(
        base_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        table=settings.drivers_table,
        timeout=settings.http_timeout_seconds,
    )
    try:
        yield store
    finally:
        store.close()


def get_email_sender(
    settings: Annotated[ProvisionerSettings, Depends(require_settings)],
) -> Optional[EmailSender]:
    if not settings.email_configured():
        return None
    return EmailSender(api_key=settings.email_api_key, from_address=settings.email_from_address)


def get_provisioner(
    settings: Annotated[ProvisionerSettings, Depends(require_settings)],
    gateway: Annotated[IdentityGateway, Depends(get_identity_gateway)],
    profiles: Annotated[ProfileStore, Depends(get_profile_store)],
    email_sender: Annotated[Optional[EmailSender], Depends(get_email_sender)],
) -> DriverProvisioner:
    """Build a provisioner for one request from the current settings."""
    notifier = None
    if settings.credential_setup_enabled:
        notifier = CredentialSetupNotifier(
            gateway,
            email_sender=email_sender,
            redirect_to=settings.credential_redirect_url,
        )

    return DriverProvisioner(
        gateway,
        profiles,
        notifier=notifier,
        search_page_size=settings.search_page_size,
        search_max_pages=settings.search_max_pages,
        atomic_upsert=settings.atomic_upsert,
        distinguish_permission_errors=settings.distinguish_permission_errors,
    )


def get_deprovisioner(
    gateway: Annotated[IdentityGateway, Depends(get_identity_gateway)],
    profiles: Annotated[ProfileStore, Depends(get_profile_store)],
) -> DriverDeprovisioner:
    return DriverDeprovisioner(gateway, profiles)


@app.get("/health")
def health_check():
    """
    Health check endpoint.

    Confirms the settings load and that the Auth admin API accepts the
    service role key.

    Returns:
        dict: Health status and service availability
    """
    checks = {"settings": False, "identity_admin_api": False}
    try:
        settings = get_settings()
        checks["settings"] = True
        gateway = build_identity_gateway(settings)
        try:
            gateway.check_admin_access()
        finally:
            gateway.close()
        checks["identity_admin_api"] = True
    except SettingsValidationError as e:
        logger.warning(f"Health check: settings invalid: {e}")
    except IdentityGatewayError as e:
        logger.warning(f"Health check: admin API not accessible: {e}")

    healthy = all(checks.values())
    health_response = {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": checks,
        "version": VERSION,
    }
    return JSONResponse(content=health_response, status_code=200 if healthy else 503)


@app.options(PROVISION_PATH)
@app.options(DEPROVISION_PATH)
def preflight():
    """CORS preflight without an Origin header; succeeds with no body."""
    return Response(status_code=status.HTTP_200_OK)


@app.post(
    PROVISION_PATH,
    response_model=ProvisionDriverResponse,
    dependencies=[Depends(verify_internal_token)],
)
def create_driver_auth_user(
    provisioner: Annotated[DriverProvisioner, Depends(get_provisioner)],
    payload: Annotated[Optional[ProvisionDriverRequest], Body()] = None,
):
    """
    Create or repair a driver's identity and profile.

    Safe to call repeatedly: an existing identity for the email is updated
    with the new password and metadata, and the profile is upserted.

    Returns:
        ProvisionDriverResponse with auth_user_id, driver_id and the
        credential-setup link when one could be generated
    """
    request = payload or ProvisionDriverRequest()
    result = provisioner.provision(request)

    return ProvisionDriverResponse(
        auth_user_id=result.identity_id,
        driver_id=result.profile_id,
        password_reset_link=result.password_reset_link,
        user={"id": result.identity_id, "email": result.email},
    )


@app.post(
    DEPROVISION_PATH,
    response_model=DeprovisionDriverResponse,
    dependencies=[Depends(verify_internal_token)],
)
def delete_driver_auth_user(
    deprovisioner: Annotated[DriverDeprovisioner, Depends(get_deprovisioner)],
    payload: Annotated[Optional[DeprovisionDriverRequest], Body()] = None,
):
    """
    Delete a driver's profile and identity.

    Accepts auth_user_id, driver_id, or both. The profile is deleted first;
    an identity that is already gone does not fail the call.
    """
    request = payload or DeprovisionDriverRequest()
    deprovisioner.deprovision(request)
    return DeprovisionDriverResponse()


# Exception handlers
@app.exception_handler(ProvisioningError)
async def provisioning_exception_handler(request: Request, exc: ProvisioningError):
    """Convert classified provisioning failures to the API error format."""
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed ({exc.error_type}): {exc.message} {exc.details}")
    else:
        logger.info(f"{request.url.path} rejected ({exc.error_type}): {exc.message}")

    return JSONResponse(content=exc.to_response(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are client errors, reported like missing fields."""
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]
    return JSONResponse(
        content={
            "error": "Invalid request body",
            "error_type": "validation_error",
            "details": {"errors": errors},
        },
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Convert HTTP exceptions (405, 401, 404) to the API error format."""
    detail = exc.detail
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        detail = "Method not allowed"

    return JSONResponse(
        content={"error": detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Convert unhandled exceptions to the API error format."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=exc)

    return JSONResponse(
        content={"error": "Internal server error", "error_type": "internal_error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
