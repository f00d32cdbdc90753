"""Error taxonomy for collaborator I/O.

Feed and execution clients translate raw failures into a
``CollaboratorError`` with a closed ``ErrorKind`` exactly once, at the
boundary. Retry and reconciliation logic match on the kind and never
re-parse error text.
"""

import asyncio
from enum import Enum

import aiohttp


class ErrorKind(str, Enum):
    """Closed set of collaborator failure kinds."""

    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_TIMEOUT = "network_timeout"
    CLIENT_ERROR = "client_error"
    NOT_FOUND = "not_found"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR, ErrorKind.NETWORK_TIMEOUT}
)

# Broker messages meaning "nothing left to sell" when no error code is returned
_INSUFFICIENT_BALANCE_MARKERS = ("not enough balance", "allowance")


class CollaboratorError(Exception):
    """Failure talking to an external collaborator (feed, exchange, broker)."""

    def __init__(self, kind: ErrorKind, message: str, status: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def transient(self) -> bool:
        return is_transient(self.kind)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{self.kind.value} (HTTP {self.status}): {base}"
        return f"{self.kind.value}: {base}"


def is_transient(kind: ErrorKind) -> bool:
    """True for failures worth retrying with backoff."""
    return kind in TRANSIENT_KINDS


def classify_status(status: int) -> ErrorKind:
    """Map an HTTP status code to an error kind.

    Only 429 and 5xx are transient; every other 4xx propagates immediately.
    """
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status >= 500:
        return ErrorKind.SERVER_ERROR
    if status == 404:
        return ErrorKind.NOT_FOUND
    if 400 <= status < 500:
        return ErrorKind.CLIENT_ERROR
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map a transport-level exception to an error kind."""
    if isinstance(exc, CollaboratorError):
        return exc.kind
    if isinstance(exc, aiohttp.ClientResponseError):
        return classify_status(exc.status)
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ErrorKind.NETWORK_TIMEOUT
    if isinstance(exc, (aiohttp.ClientConnectionError, ConnectionResetError)):
        return ErrorKind.NETWORK_TIMEOUT
    return ErrorKind.UNKNOWN


def classify_order_error(message: str | None) -> ErrorKind:
    """Classify a broker order error that arrived without a code.

    Compatibility shim: some brokers only report "not enough balance" or
    "allowance" in free text when selling a position that was already
    closed out of band. Prefer an explicit code from the execution client
    when one exists.
    """
    if not message:
        return ErrorKind.UNKNOWN
    lowered = message.lower()
    if any(marker in lowered for marker in _INSUFFICIENT_BALANCE_MARKERS):
        return ErrorKind.INSUFFICIENT_BALANCE
    if "fetch failed" in lowered or "timeout" in lowered or "econnreset" in lowered:
        return ErrorKind.NETWORK_TIMEOUT
    return ErrorKind.UNKNOWN
