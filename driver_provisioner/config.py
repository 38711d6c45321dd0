"""
Configuration module for the Driver Provisioner.

This module provides environment variable configuration and settings management
using Pydantic Settings for type-safe configuration.
"""
import logging
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProvisionerSettings(BaseSettings):
    """
    Configuration settings for the Driver Provisioner application.

    All settings are loaded from environment variables with validation.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Required environment variables
    supabase_url: str = Field(
        ...,
        validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL"),
        description="Base URL of the Supabase project (identity service and profile store)"
    )

    supabase_service_role_key: str = Field(
        ...,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "VITE_SUPABASE_SERVICE_ROLE_KEY"),
        description="Service role key used for the Auth admin API and the drivers table"
    )

    # Profile store
    drivers_table: str = Field(
        "drivers",
        description="Table holding driver profile rows"
    )

    atomic_upsert: bool = Field(
        True,
        description="Upsert profiles with a single on-conflict request instead of read-then-write"
    )

    # Identity search bounds for conflict repair
    search_page_size: int = Field(
        1000,
        ge=1,
        description="Users requested per page when searching identities by email"
    )

    search_max_pages: int = Field(
        10,
        ge=1,
        description="Maximum number of pages scanned before giving up on an email search"
    )

    distinguish_permission_errors: bool = Field(
        True,
        description="Report 'not allowed' identity failures as permission_denied"
    )

    # Credential setup notification
    credential_setup_enabled: bool = Field(
        True,
        description="Generate a credential-setup link after provisioning"
    )

    credential_redirect_url: Optional[str] = Field(
        None,
        description="Where the credential-setup link sends the driver after use"
    )

    email_api_key: Optional[str] = Field(
        None,
        description="Resend API key; credential-setup emails are skipped when unset"
    )

    email_from_address: Optional[str] = Field(
        None,
        description="Sender address for credential-setup emails"
    )

    # Caller check
    internal_api_token: Optional[str] = Field(
        None,
        description="Shared secret callers must send in x-internal-token; unset disables the check"
    )

    http_timeout_seconds: float = Field(
        10.0,
        gt=0,
        description="Timeout applied to every call to the identity service and profile store"
    )

    log_level: str = Field(
        "INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v):
        """Validate the Supabase URL and drop any trailing slash."""
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("SUPABASE_URL must be an HTTP(S) URL")
        return v.rstrip("/")

    @field_validator("supabase_service_role_key")
    @classmethod
    def validate_service_role_key(cls, v):
        """The service role key is a JWT; anything else is a misconfiguration."""
        v = v.strip()
        if not v:
            raise ValueError("SUPABASE_SERVICE_ROLE_KEY cannot be empty")
        if not v.startswith("eyJ"):
            raise ValueError("SUPABASE_SERVICE_ROLE_KEY appears invalid - should be a JWT starting with 'eyJ'")
        return v

    @field_validator("internal_api_token", "email_api_key", "email_from_address", "credential_redirect_url")
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    def email_configured(self) -> bool:
        """Check whether credential-setup emails can be sent."""
        return bool(self.email_api_key and self.email_from_address)


# Global settings instance
settings: Optional[ProvisionerSettings] = None


def get_settings() -> ProvisionerSettings:
    """
    Get the global settings instance, creating it if necessary.

    Returns:
        ProvisionerSettings: The global settings instance

    Raises:
        pydantic.ValidationError: If required environment variables are missing or invalid
    """
    global settings
    if settings is None:
        settings = ProvisionerSettings()
    return settings


def reload_settings() -> ProvisionerSettings:
    """
    Force reload settings from environment variables.

    This is useful for testing or when environment variables change.
    """
    global settings
    settings = ProvisionerSettings()
    return settings


def require_settings() -> ProvisionerSettings:
    """
    FastAPI dependency returning the settings, or failing the request cleanly.

    Raises:
        ConfigurationError: If the Supabase credentials are missing or invalid
    """
    try:
        return get_settings()
    except ValidationError as e:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
        logger.error(f"Invalid configuration for fields: {', '.join(fields)}")
        raise ConfigurationError(
            "Server missing Supabase credentials",
            details={"invalid_settings": fields},
        ) from e
