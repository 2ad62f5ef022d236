"""
Engine Error Taxonomy

Every failure the session engine surfaces derives from UmsClientError:
- AuthError: a token exchange hop failed (fatal to the connection attempt)
- GatewayError: a REST collaborator returned an error or could not be reached
- ConnectionLostError: the socket failed and the retry budget is spent
- ProtocolError: an inbound frame could not be decoded or routed
- StateError: an operation was requested that the current state cannot serve

Two more live beside the code that raises them: StorageError with the
storage port and QueueFullError with the outbound queue.
"""

from dataclasses import dataclass


class UmsClientError(Exception):
    """Base exception for the session engine."""
    pass


@dataclass
class AuthError(UmsClientError):
    """Error during credential resolution.

    Attributes:
        message: Human-readable error message
        reason: Readable reason derived from the backend's error code
        status_code: HTTP status code of the failed hop
    """

    message: str
    reason: str | None = None
    status_code: int | None = None

    def __str__(self) -> str:
        parts = [self.message]
        if self.reason:
            parts.append(f"({self.reason})")
        if self.status_code:
            parts.append(f"[{self.status_code}]")
        return " ".join(parts)


@dataclass
class GatewayError(UmsClientError):
    """Error returned by a REST collaborator.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code (None for transport failures)
        internal_error_code: Backend-specific code carried in the error body
    """

    message: str
    status_code: int | None = None
    internal_error_code: int | None = None

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} [{self.status_code}]"
        return self.message


class ConnectionLostError(UmsClientError):
    """Socket error or abnormal close beyond the retry budget."""
    pass


class ProtocolError(UmsClientError):
    """Unexpected, malformed or unroutable frame."""
    pass


class StateError(UmsClientError):
    """Operation requested without the socket, conversation or dialog it needs."""
    pass
