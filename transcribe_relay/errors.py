"""Session error taxonomy and backend failure classification.

Backend exceptions are translated into an ``ErrorKind`` exactly once, by
``classify_backend_error``. Everything downstream (reporting, reconnect
decisions, close codes) works on the kind alone.
"""

import logging
from enum import Enum

from amazon_transcribe.exceptions import (
    BadRequestException,
    ConflictException,
    InternalFailureException,
    LimitExceededException,
    ServiceUnavailableException,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ErrorKind",
    "RelayError",
    "BackendStreamClosed",
    "classify_backend_error",
    "CLOSE_NORMAL",
    "CLOSE_INTERNAL_ERROR",
]

CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011

# Error codes AWS uses for expired or stale temporary credentials.
EXPIRED_CREDENTIAL_CODES = frozenset(
    {
        "ExpiredToken",
        "ExpiredTokenException",
        "RequestExpired",
        "TokenRefreshRequired",
    }
)

_DIARIZATION_MARKERS = ("speaker identification", "speaker label", "diarization")


class ErrorKind(Enum):
    """Closed set of error kinds reported to clients."""

    MALFORMED_REQUEST = "malformed-request"
    CONFLICTING_OPERATION = "conflicting-operation"
    RATE_LIMIT_EXCEEDED = "rate-limit-exceeded"
    SERVICE_UNAVAILABLE = "service-unavailable"
    INTERNAL_FAILURE = "internal-failure"
    DIARIZATION_UNSUPPORTED = "diarization-unsupported"
    STREAM_CLOSED_PREMATURELY = "stream-closed-prematurely"
    CREDENTIAL_EXPIRED = "credential-expired"
    INVALID_CLIENT_MESSAGE = "invalid-client-message"
    AUDIO_CHUNK_TOO_LARGE = "audio-chunk-too-large"
    UNCLASSIFIED_FAILURE = "unclassified-failure"

    @property
    def fatal(self) -> bool:
        """Whether this kind ends the session.

        Credential expiry is fatal unless the session still has a reconnect
        attempt left; that decision belongs to the session.
        """
        return self not in (
            ErrorKind.INVALID_CLIENT_MESSAGE,
            ErrorKind.AUDIO_CHUNK_TOO_LARGE,
        )

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.CREDENTIAL_EXPIRED

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ErrorKind.MALFORMED_REQUEST: "The transcription request was rejected as malformed",
    ErrorKind.CONFLICTING_OPERATION: "A conflicting transcription operation is in progress",
    ErrorKind.RATE_LIMIT_EXCEEDED: "Transcription rate limit exceeded",
    ErrorKind.SERVICE_UNAVAILABLE: "Transcription service is unavailable",
    ErrorKind.INTERNAL_FAILURE: "Transcription service reported an internal failure",
    ErrorKind.DIARIZATION_UNSUPPORTED: (
        "Speaker identification is not supported for this region or configuration"
    ),
    ErrorKind.STREAM_CLOSED_PREMATURELY: "Transcription stream closed unexpectedly",
    ErrorKind.CREDENTIAL_EXPIRED: "Transcription credentials expired",
    ErrorKind.INVALID_CLIENT_MESSAGE: "Invalid client message",
    ErrorKind.AUDIO_CHUNK_TOO_LARGE: "Audio chunk too large",
    ErrorKind.UNCLASSIFIED_FAILURE: "Transcription failed",
}


class RelayError(Exception):
    """An already-classified session error."""

    def __init__(self, kind: ErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or kind.description
        super().__init__(self.message)


class BackendStreamClosed(Exception):
    """The backend event stream ended while the session still expected events."""

    pass


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def _error_code(exc: BaseException) -> str | None:
    for attr in ("error_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, str):
            return value
    return None


def classify_backend_error(exc: BaseException) -> ErrorKind:
    """Map a backend failure to an ``ErrorKind``.

    Args:
        exc: Exception raised while opening or consuming a backend stream

    Returns:
        The matching ErrorKind; UNCLASSIFIED_FAILURE when nothing matches
    """
    if isinstance(exc, RelayError):
        kind = exc.kind
    elif _error_code(exc) in EXPIRED_CREDENTIAL_CODES:
        kind = ErrorKind.CREDENTIAL_EXPIRED
    elif isinstance(exc, BadRequestException):
        text = _error_message(exc).lower()
        if any(marker in text for marker in _DIARIZATION_MARKERS):
            kind = ErrorKind.DIARIZATION_UNSUPPORTED
        else:
            kind = ErrorKind.MALFORMED_REQUEST
    elif isinstance(exc, ConflictException):
        kind = ErrorKind.CONFLICTING_OPERATION
    elif isinstance(exc, LimitExceededException):
        kind = ErrorKind.RATE_LIMIT_EXCEEDED
    elif isinstance(exc, ServiceUnavailableException):
        kind = ErrorKind.SERVICE_UNAVAILABLE
    elif isinstance(exc, InternalFailureException):
        kind = ErrorKind.INTERNAL_FAILURE
    elif isinstance(exc, (BackendStreamClosed, EOFError, ConnectionResetError)):
        kind = ErrorKind.STREAM_CLOSED_PREMATURELY
    else:
        kind = ErrorKind.UNCLASSIFIED_FAILURE

    logger.info(
        "Classified backend error %s as %s: %s",
        type(exc).__name__,
        kind.value,
        _error_message(exc),
    )
    return kind
