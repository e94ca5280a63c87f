"""Error taxonomy for the purge tool."""


class MailByeByeError(Exception):
    """Base class for every error the tool raises on purpose."""


class ValidationError(MailByeByeError):
    """Bad arguments or config. Raised before any remote call is made."""

    usage = None

    def __init__(self, message, usage=None):
        super().__init__(message)
        if usage:
            self.usage = usage


class InvalidRange(ValidationError):
    usage = "--start YYYY-MM-DD --end YYYY-MM-DD (start <= end, at most 365 days apart)"


class ConflictingFilter(ValidationError):
    usage = "use either --days/--cutoff OR --start/--end (or --year), not both"


class AuthError(MailByeByeError):
    """Token or permission failure while talking to Google."""


class QuotaOrPermissionError(MailByeByeError):
    """Request refused for quota or permission reasons. Retrying won't help."""


class TransientNetworkError(MailByeByeError):
    """Network or server hiccup while fetching a page of ids."""


class ThrottleError(TransientNetworkError):
    """Remote side asked us to slow down (429/503 or rate-limit 403)."""


class RemoteError(MailByeByeError):
    """Any other failed remote call."""
