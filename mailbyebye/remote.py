"""Reading Google API errors."""
import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from mailbyebye.errors import (
    AuthError, QuotaOrPermissionError, RemoteError, ThrottleError, TransientNetworkError,
)

THROTTLE_STATUSES = (429, 503)
RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "too many concurrent requests")
QUOTA_REASONS = ("quotaexceeded", "dailylimitexceeded")

# Anything that means the wire gave out rather than the server said no
NETWORK_ERRORS = (OSError, httplib2.HttpLib2Error)

# Everything a single execute() can throw at us
CALL_ERRORS = (HttpError, RefreshError) + NETWORK_ERRORS


def http_status(exc):
    resp = getattr(exc, "resp", None)
    status = getattr(resp, "status", None)
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def _error_text(exc):
    content = getattr(exc, "content", None)
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="ignore").lower()
    return str(exc).lower()


def is_throttle(exc):
    """429/503, or Gmail's 403 rateLimitExceeded flavour."""
    if not isinstance(exc, HttpError):
        return False
    status = http_status(exc)
    if status in THROTTLE_STATUSES:
        return True
    if status == 403:
        text = _error_text(exc)
        return any(reason in text for reason in RATE_LIMIT_REASONS)
    return False


def is_quota_or_permission(exc):
    if not isinstance(exc, HttpError) or is_throttle(exc):
        return False
    if http_status(exc) == 403:
        return True
    text = _error_text(exc)
    return any(reason in text for reason in QUOTA_REASONS)


def describe(exc):
    status = http_status(exc)
    if status is None:
        return str(exc)
    reason = getattr(exc, "reason", None) or _error_text(exc)[:200]
    return f"HTTP {status}: {reason}"


def classify(exc, doing):
    """Map a failed non-batch call onto the error taxonomy."""
    if isinstance(exc, RefreshError):
        return AuthError(f"Authorization failed while {doing}: {exc}")
    if isinstance(exc, NETWORK_ERRORS):
        return TransientNetworkError(f"Network error while {doing}: {exc}")
    if not isinstance(exc, HttpError):
        return RemoteError(f"Unexpected error while {doing}: {exc}")

    status = http_status(exc)
    if status == 401:
        return AuthError(f"Unauthorized while {doing}: {describe(exc)}")
    if is_throttle(exc):
        return ThrottleError(f"Throttled while {doing}: {describe(exc)}")
    if status is not None and status >= 500:
        return TransientNetworkError(f"Server busy while {doing}: {describe(exc)}")
    if is_quota_or_permission(exc):
        return QuotaOrPermissionError(f"Refused while {doing}: {describe(exc)}")
    return RemoteError(f"Failed while {doing}: {describe(exc)}")
