"""
Failure classification for the retry escalator.

Permanent failures go straight to the DLQ; transient ones walk the retry
tiers. Anything not recognised as permanent is treated as transient.
"""
from typing import Optional

from pydantic import ValidationError

from catalog_sync.errors import PermanentSyncError
from catalog_sync.models.envelope import FailureType

# Malformed payloads and programming errors do not heal on retry
_PERMANENT_TYPES = (PermanentSyncError, ValidationError, ValueError, KeyError, TypeError)

# 4xx codes that still mean "try again later"
_RETRYABLE_CLIENT_CODES = {408, 429}


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify_failure(exc: BaseException) -> FailureType:
    if isinstance(exc, _PERMANENT_TYPES):
        return FailureType.PERMANENT

    code = _status_code(exc)
    if code is not None and 400 <= code < 500 and code not in _RETRYABLE_CLIENT_CODES:
        return FailureType.PERMANENT

    return FailureType.TRANSIENT


def error_code(exc: BaseException) -> str:
    """Stable error code recorded on envelopes and DLQ rows: the exception class name."""
    return type(exc).__name__
