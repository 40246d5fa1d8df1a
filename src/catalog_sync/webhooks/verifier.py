"""
Inbound webhook authenticity check.

Modes:
  signature  HMAC-SHA256 of "<timestamp>.<body>" (or the body alone when the
             sender omits the timestamp and one is not required), sent as
             base64 or hex
  secret     shared secret echoed verbatim in a header
  either     signature if it validates, otherwise the secret header

The verifier is pure: no I/O, clock injectable, headers passed in.
"""
import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from catalog_sync.config import Settings

logger = logging.getLogger(__name__)

SIGNATURE_MODE = "signature"
SECRET_MODE = "secret"
EITHER_MODE = "either"


@dataclass(frozen=True)
class VerifierConfig:
    enabled: bool = False
    mode: str = SIGNATURE_MODE
    secret_key: str = ""
    signature_header: str = "X-Signature"
    timestamp_header: str = "X-Timestamp"
    secret_header: str = "X-Webhook-Secret"
    require_timestamp: bool = False
    max_skew_seconds: int = 300  # 0 disables the check

    @classmethod
    def from_settings(cls, settings: Settings) -> "VerifierConfig":
        return cls(
            enabled=settings.webhook_security_enabled,
            mode=settings.webhook_security_mode,
            secret_key=settings.webhook_secret_key,
            signature_header=settings.webhook_signature_header,
            timestamp_header=settings.webhook_timestamp_header,
            secret_header=settings.webhook_secret_header,
            require_timestamp=settings.webhook_require_timestamp,
            max_skew_seconds=settings.webhook_max_skew_seconds,
        )


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, error: str) -> "VerificationResult":
        return cls(is_valid=False, error=error)


def sign(payload: str, secret_key: str) -> bytes:
    return hmac.new(secret_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()


def _secure_equals(provided: str, expected: str, ignore_case: bool = False) -> bool:
    left = provided.strip()
    right = expected.strip()
    if ignore_case:
        left, right = left.lower(), right.lower()
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return (value or "").strip()


class WebhookVerifier:
    def __init__(self, config: VerifierConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.clock = clock

    def validate(
        self,
        headers: Mapping[str, str],
        raw_body: str,
        correlation_id: str = "",
    ) -> VerificationResult:
        cfg = self.config
        if not cfg.enabled:
            return VerificationResult.ok()

        if not cfg.secret_key.strip():
            logger.warning(
                "Webhook security is enabled but no secret key is configured. CorrelationId=%s",
                correlation_id,
            )
            return VerificationResult.fail("Webhook security secret key is missing.")

        mode = cfg.mode.strip().lower()
        if mode == SIGNATURE_MODE:
            return self._validate_signature(headers, raw_body, correlation_id)
        if mode == SECRET_MODE:
            return self._validate_secret(headers, correlation_id)
        if mode == EITHER_MODE:
            result = self._validate_signature(headers, raw_body, correlation_id)
            return result if result.is_valid else self._validate_secret(headers, correlation_id)
        return VerificationResult.fail(
            f"Invalid webhook security mode '{mode}'. Supported modes: signature, secret, either."
        )

    def _validate_signature(
        self, headers: Mapping[str, str], raw_body: str, correlation_id: str
    ) -> VerificationResult:
        cfg = self.config
        provided = _header(headers, cfg.signature_header)
        if not provided:
            return VerificationResult.fail(f"Missing signature header '{cfg.signature_header}'.")

        timestamp = _header(headers, cfg.timestamp_header)
        if not timestamp:
            if cfg.require_timestamp:
                return VerificationResult.fail(
                    f"Missing required timestamp header '{cfg.timestamp_header}'."
                )
            if self._matches(provided, raw_body):
                return VerificationResult.ok()
            return VerificationResult.fail("Invalid webhook signature.")

        try:
            timestamp_seconds = int(timestamp)
        except ValueError:
            return VerificationResult.fail(f"Invalid timestamp header '{cfg.timestamp_header}'.")

        if cfg.max_skew_seconds > 0:
            skew = abs(int(self.clock()) - timestamp_seconds)
            if skew > cfg.max_skew_seconds:
                return VerificationResult.fail(
                    f"Webhook timestamp skew exceeded allowed limit ({cfg.max_skew_seconds}s)."
                )

        if self._matches(provided, f"{timestamp}.{raw_body}"):
            return VerificationResult.ok()

        # Some senders include the timestamp header but sign only the body;
        # not accepted once timestamps are required
        if not cfg.require_timestamp and self._matches(provided, raw_body):
            logger.debug(
                "Webhook signature matched body-only payload. CorrelationId=%s", correlation_id
            )
            return VerificationResult.ok()

        return VerificationResult.fail("Invalid webhook signature.")

    def _validate_secret(self, headers: Mapping[str, str], correlation_id: str) -> VerificationResult:
        cfg = self.config
        provided = _header(headers, cfg.secret_header)
        if not provided:
            return VerificationResult.fail(f"Missing secret header '{cfg.secret_header}'.")
        if not _secure_equals(provided, cfg.secret_key):
            logger.warning(
                "Webhook secret header mismatch. CorrelationId=%s, HeaderName=%s",
                correlation_id,
                cfg.secret_header,
            )
            return VerificationResult.fail("Invalid webhook secret.")
        return VerificationResult.ok()

    def _matches(self, provided: str, payload: str) -> bool:
        digest = sign(payload, self.config.secret_key)
        if _secure_equals(provided, base64.b64encode(digest).decode("ascii")):
            return True
        return _secure_equals(provided, digest.hex(), ignore_case=True)
