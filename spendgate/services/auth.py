"""
Optional API key guard for the Spendgate admin routers.

``API_KEY`` is read on every call, so it can be toggled without a restart
(and by tests). Unset means development mode: every request is allowed.
"""
import os
import secrets
from typing import Optional

from fastapi import Security
from fastapi.security import APIKeyHeader

from spendgate.services.errors import ApiKeyError

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def configured_api_key() -> Optional[str]:
    return os.getenv("API_KEY") or None


def verify_api_key(api_key: Optional[str] = Security(API_KEY_HEADER)) -> str:
    """
    Router dependency.

    Raises:
        ApiKeyError: MISSING_API_KEY (401) or INVALID_API_KEY (403)
    """
    expected = configured_api_key()
    if expected is None:
        return api_key or "dev-mode"

    if not api_key:
        raise ApiKeyError(missing=True)
    if not secrets.compare_digest(api_key, expected):
        raise ApiKeyError(missing=False)
    return api_key
