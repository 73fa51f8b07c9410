"""Custom exception hierarchy for the trade journal."""


class JournalError(Exception):
    """Base exception for all trade journal errors."""


# --- Configuration ---
class ConfigError(JournalError):
    """Invalid or missing configuration."""


# --- Ingestion ---
class MalformedRecord(JournalError):
    """A single raw record (CSV row or API fill) could not be normalized.

    ``line`` is the 1-based CSV line number, or the position of the fill
    in the broker response.
    """

    def __init__(self, field: str, reason: str, line: int | None = None):
        self.field = field
        self.reason = reason
        self.line = line
        where = f"line {line}: " if line is not None else ""
        super().__init__(f"{where}{field}: {reason}")


class MalformedFile(JournalError):
    """The CSV file does not follow the expected column layout."""


# --- Broker ---
class BrokerError(JournalError):
    """Broker API communication error."""


class AuthFailure(BrokerError):
    """Broker rejected the credentials or the access token."""


class TransientNetworkFailure(BrokerError):
    """Timeout, connection error or retryable HTTP status, retries exhausted."""


# --- Persistence ---
class NotFoundError(JournalError):
    """Requested entity does not exist."""


class AnnotationError(JournalError):
    """Annotation tried to change an economic field of a trade."""
