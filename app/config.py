# app/config.py
"""
Centralized configuration management with startup validation.

Defines REQUIRED vs OPTIONAL environment variables and provides
safe configuration loading with validation and logging. Stripe
credentials are only recorded as presence flags here; the values
themselves are read by billing.stripe_client.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SERVICE_NAME = "billing-api"
SERVICE_VERSION = "0.1.0"

DEFAULT_MAX_REQUEST_SIZE_BYTES = 1_048_576  # 1MB
MIN_REQUEST_SIZE_BYTES = 1024  # 1KB minimum

# Environments where missing Stripe credentials are fatal
STRICT_ENVIRONMENTS = ("production", "staging")

# Sensitive substrings that should never appear in logs
SENSITIVE_SUBSTRINGS = ("key", "token", "secret", "password", "credential", "auth")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


@dataclass
class AppConfig:
    """Application configuration loaded from environment."""

    # Service info
    service_name: str = SERVICE_NAME
    service_version: str = SERVICE_VERSION
    environment: str = "development"

    # Security settings
    max_request_size_bytes: int = DEFAULT_MAX_REQUEST_SIZE_BYTES
    secure_cookies: bool = False

    # Stripe (presence only, values never stored here)
    stripe_secret_key_present: bool = False
    stripe_webhook_secret_present: bool = False
    stripe_test_mode: bool = True

    frontend_url: str = "http://localhost:3000"

    # Warnings collected during config load
    warnings: list = field(default_factory=list)


# =============================================================================
# Configuration Loading
# =============================================================================


def _parse_int_env(
    name: str, default: int, min_value: Optional[int] = None
) -> tuple[int, Optional[str]]:
    """
    Parse an integer environment variable with validation.

    Returns (value, warning_message).
    On invalid input, returns default with a warning.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default, None

    try:
        value = int(raw)
    except ValueError:
        return default, f"{name}='{raw}' is not a valid integer; using default {default}"

    if min_value is not None and value < min_value:
        return default, f"{name}={value} is below minimum {min_value}; using default {default}"

    return value, None


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    raw = os.environ.get(name, "").lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off"):
        return False
    return default


def load_config(fail_fast: bool = True) -> AppConfig:
    """
    Load and validate application configuration from environment.

    Args:
        fail_fast: If True, raise ConfigurationError on critical issues.
                   If False, collect warnings and continue.

    Raises:
        ConfigurationError: Stripe credentials missing in a strict
                            environment and fail_fast is True.
    """
    warnings = []
    errors = []

    environment = os.environ.get("APP_ENVIRONMENT", "development").lower()

    max_request_size, size_warning = _parse_int_env(
        "MAX_REQUEST_SIZE_BYTES",
        DEFAULT_MAX_REQUEST_SIZE_BYTES,
        min_value=MIN_REQUEST_SIZE_BYTES,
    )
    if size_warning:
        warnings.append(size_warning)

    stripe_secret_key_present = bool(os.environ.get("STRIPE_SECRET_KEY"))
    stripe_webhook_secret_present = bool(os.environ.get("STRIPE_WEBHOOK_SECRET"))
    stripe_test_mode = _parse_bool_env("STRIPE_TEST_MODE", True)

    if not stripe_secret_key_present:
        message = "STRIPE_SECRET_KEY is not set; billing endpoints will return 503"
        (errors if environment in STRICT_ENVIRONMENTS else warnings).append(message)

    if not stripe_webhook_secret_present:
        message = "STRIPE_WEBHOOK_SECRET is not set; webhook deliveries will be rejected"
        (errors if environment in STRICT_ENVIRONMENTS else warnings).append(message)

    if environment == "production" and stripe_test_mode:
        warnings.append("STRIPE_TEST_MODE is true in production")

    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    if errors:
        for error in errors:
            logger.error(f"[CONFIG] {error}")
        if fail_fast:
            raise ConfigurationError("; ".join(errors))
        warnings.extend(errors)

    return AppConfig(
        environment=environment,
        max_request_size_bytes=max_request_size,
        secure_cookies=_parse_bool_env("SESSION_COOKIE_SECURE", environment == "production"),
        stripe_secret_key_present=stripe_secret_key_present,
        stripe_webhook_secret_present=stripe_webhook_secret_present,
        stripe_test_mode=stripe_test_mode,
        frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        warnings=warnings,
    )


def log_config_snapshot(config: AppConfig) -> str:
    """
    Generate and log a safe configuration snapshot.

    Returns the snapshot string for testing purposes.
    Never logs actual secret values - only boolean presence flags.
    """
    snapshot = (
        f"[STARTUP] service={config.service_name} "
        f"version={config.service_version} "
        f"environment={config.environment} "
        f"max_request_size_bytes={config.max_request_size_bytes} "
        f"frontend_url={config.frontend_url} "
        f"stripe_test_mode={config.stripe_test_mode} "
        f"stripe_secret_key_present={config.stripe_secret_key_present} "
        f"stripe_webhook_secret_present={config.stripe_webhook_secret_present}"
    )
    logger.info(snapshot)
    return snapshot


def validate_config_snapshot_safety(snapshot: str) -> bool:
    """
    Validate that a config snapshot doesn't contain sensitive values.

    Returns True if safe, False if potentially unsafe.
    """
    snapshot_lower = snapshot.lower()

    # "secret_key_present=True" is fine, "secret_key=sk_live_..." is not
    for sensitive in SENSITIVE_SUBSTRINGS:
        pattern = rf"{sensitive}=(?!true|false)"
        if re.search(pattern, snapshot_lower):
            return False

    return True
