"""Error taxonomy for the ticket backend.

Raised by the remote ticket source and caught by the tiered cache, which
turns them into recorded notices or explicit result values.
"""


class TicketSourceError(Exception):
    """Base class for failures talking to the remote ticket source."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RemoteUnavailableError(TicketSourceError):
    """Timeout, transport failure or 5xx from the remote source."""


class RemoteRejectedError(TicketSourceError):
    """The remote source refused the request (4xx: validation, conflict, auth)."""
