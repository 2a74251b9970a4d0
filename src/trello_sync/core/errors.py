"""Error taxonomy for the Trello API client.

Every failure the client surfaces is a ``TrelloSyncError`` subclass.
The ``retryable`` and ``fatal`` class flags drive the client's retry
loop and the orchestrator's abort decision respectively:

- ``AuthError`` (401/403): fatal to the session, never retried.
- ``NotFoundError`` (404): the remote entity is gone, never retried.
- ``RateLimitError`` (429): retried; raised only once retries run out.
- ``ServerError`` (5xx): retried; raised only once retries run out.
- ``ClientError`` (other 4xx): fatal to the one operation.
- ``ConnectionLostError``: network unreachable after retries; fatal to
  the session.
"""

from __future__ import annotations


class TrelloSyncError(Exception):
    """Base class for all client errors."""

    retryable = False
    fatal = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.path = path


class AuthError(TrelloSyncError):
    """Bad or missing credentials, or insufficient token scope."""

    fatal = True


class NotFoundError(TrelloSyncError):
    """The remote resource does not exist (deleted remotely)."""


class RateLimitError(TrelloSyncError):
    """HTTP 429 after the retry ceiling was reached."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status: int | None = 429,
        path: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status, path=path)
        self.retry_after = retry_after


class ServerError(TrelloSyncError):
    """HTTP 5xx after the retry ceiling was reached."""

    retryable = True


class ClientError(TrelloSyncError):
    """Malformed request (4xx other than 401/403/404/429)."""


class ConnectionLostError(TrelloSyncError):
    """Network failure (connection error or timeout) after retries."""

    retryable = True
    fatal = True


def error_for_status(
    status: int, path: str, body: str = ""
) -> TrelloSyncError:
    """Map an HTTP error status to its exception type.

    Args:
        status: HTTP status code (>= 400).
        path: Request path, for the message.
        body: Response text, truncated into the message.

    Returns:
        The matching (unraised) exception instance.
    """
    detail = body[:200].strip()
    suffix = f": {detail}" if detail else ""
    if status in (401, 403):
        return AuthError(
            f"Authentication failed ({status}) for {path}{suffix}. "
            "Check TRELLO_API_KEY and TRELLO_TOKEN.",
            status=status,
            path=path,
        )
    if status == 404:
        return NotFoundError(
            f"Not found: {path}", status=status, path=path
        )
    if status == 429:
        return RateLimitError(
            f"Rate limit exceeded for {path}", path=path
        )
    if status >= 500:
        return ServerError(
            f"Server error {status} for {path}{suffix}",
            status=status,
            path=path,
        )
    return ClientError(
        f"Request rejected ({status}) for {path}{suffix}",
        status=status,
        path=path,
    )
