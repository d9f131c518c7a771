"""
Internal service key for stock endpoints and other service-to-service calls.

A missing INTERNAL_API_KEY does not abort start-up; an insecure default is
used with a loud warning so local runs work and production misconfiguration
is visible.
"""
import secrets
import warnings

from shared.config.settings import INTERNAL_API_KEY as _CONFIGURED_KEY

_INTERNAL_API_KEY: str = _CONFIGURED_KEY

if not _INTERNAL_API_KEY:
    warnings.warn(
        "INTERNAL_API_KEY is not set. Using an insecure empty default. "
        "Set this env var in production!",
        stacklevel=2,
    )
    _INTERNAL_API_KEY = "insecure-default-change-me"

INTERNAL_API_KEY: str = _INTERNAL_API_KEY


def verify_api_key(provided_key: str) -> bool:
    """Verify an API key using constant-time comparison to prevent timing attacks."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), str(INTERNAL_API_KEY))
