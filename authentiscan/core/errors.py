"""
errors.py — Domain error taxonomy.

Services raise these; main.py registers one exception handler that turns
any AuthentiscanError into a JSON body of the form:
  { "detail": "...", "code": "..." }

Per-item detector failures (DetectorError subclasses) are never raised out
of a batch: the Batch Scheduler captures them and reports them as outcomes.
"""


class AuthentiscanError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AuthentiscanError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class UserNotFound(AuthentiscanError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class EmailInUse(AuthentiscanError):
    status_code = 409
    code = "email_in_use"
    default_message = "An account with this email already exists"


class ResultNotFound(AuthentiscanError):
    status_code = 404
    code = "result_not_found"
    default_message = "Result not found"


class InsufficientCredits(AuthentiscanError):
    status_code = 402
    code = "insufficient_credits"
    default_message = "Insufficient credits"


class PaymentVerificationFailed(AuthentiscanError):
    status_code = 400
    code = "payment_verification_failed"
    default_message = "Failed to verify payment"


class MetadataMismatch(AuthentiscanError):
    status_code = 403
    code = "metadata_mismatch"
    default_message = "Payment metadata does not match authenticated user"


class PaymentProviderError(AuthentiscanError):
    status_code = 502
    code = "payment_provider_error"
    default_message = "Payment provider request failed"


class DatabaseUnavailable(AuthentiscanError):
    status_code = 503
    code = "database_unavailable"
    default_message = "Database unavailable"


class InternalError(AuthentiscanError):
    """A result was produced but could not be stored."""

    status_code = 500
    code = "internal_error"
    default_message = "Failed to save result"


# ── Per-item detector errors ──────────────────────────────────────────────────

class DetectorError(AuthentiscanError):
    """Failure verifying a single media item."""

    status_code = 502
    code = "detector_error"
    default_message = "Detector request failed"


class MalformedMedia(DetectorError):
    status_code = 422
    code = "malformed_media"
    default_message = "Media could not be read"


class MediaUnreachable(DetectorError):
    code = "media_unreachable"
    default_message = "Remote media URL is unreachable"


class ProviderUnavailable(DetectorError):
    code = "provider_unavailable"
    default_message = "Detection provider unavailable"


class ProviderTimeout(DetectorError):
    status_code = 504
    code = "provider_timeout"
    default_message = "Detection provider timed out"
