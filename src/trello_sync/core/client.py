import asyncio
import logging
import random
import threading
from typing import Any, Awaitable, Callable

import requests

from ..config import Config
from .async_utils import run_sync_limited
from .errors import ConnectionLostError, TrelloSyncError, error_for_status
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Fields requested when fetching remote state
BOARD_FIELDS = "name,desc,closed,dateLastActivity"
LIST_FIELDS = "name,closed,pos,idBoard"
CARD_FIELDS = (
    "name,desc,due,idMembers,idLabels,idList,idBoard,pos,closed,"
    "dateLastActivity"
)
CHECKLIST_FIELDS = "name,pos,idCard"


class TrelloClient:
    """Asynchronous Trello REST client.

    The HTTP send itself is blocking (``requests``) and runs on a worker
    thread through ``run_sync_limited``; everything around it (rate
    limiting, retry backoff) is awaited on the event loop.
    """

    DEFAULT_INITIAL_DELAY = 1.0
    DEFAULT_MAX_DELAY = 60.0
    DEFAULT_BACKOFF_FACTOR = 2.0
    DEFAULT_JITTER = 0.1

    def __init__(
        self,
        config: Config,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        jitter: float = DEFAULT_JITTER,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._sleep = sleep
        self._thread_local = threading.local()
        self.rate_limiter = RateLimiter(
            config.requests_per_window,
            config.window_seconds,
            name="token",
            sleep=sleep,
        )
        self._board_limiters: dict[str, RateLimiter] = {}

    @property
    def session(self) -> requests.Session:
        """Return the current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({"Accept": "application/json"})
        return session

    def board_limiter(self, board_id: str) -> RateLimiter:
        """Get or create the rolling-window limiter for one board."""
        limiter = self._board_limiters.get(board_id)
        if limiter is None:
            limiter = RateLimiter(
                self.config.board_requests_per_window,
                self.config.window_seconds,
                name=f"board:{board_id}",
                sleep=self._sleep,
            )
            self._board_limiters[board_id] = limiter
        return limiter

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        url: str,
        params: dict[str, Any],
        body: dict[str, Any] | None,
    ) -> requests.Response:
        """Blocking HTTP send; runs on a worker thread."""
        return self._get_session().request(
            method,
            url,
            params=params,
            json=body,
            timeout=(10, 60),
        )

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        *,
        board_id: str | None = None,
        on_retry: Callable[[int], None] | None = None,
    ) -> Any:
        """
        Issue one API call, retrying transient failures.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            path: Resource path relative to the base URL, e.g. ``cards/abc``.
            params: Extra query parameters.
            body: JSON request body.
            board_id: Board the call touches; also charges that board's
                rate limit when given.
            on_retry: Called with the retry number before each retry.

        Returns:
            Decoded JSON response ({} for an empty body).

        Raises:
            AuthError, NotFoundError, ClientError: Immediately.
            RateLimitError, ServerError, ConnectionLostError: Once
                ``max_attempts`` attempts have failed.
        """
        url = self.build_url(path)
        query = dict(params or {})
        query["key"] = self.config.api_key
        query["token"] = self.config.token
        attempts = self.config.max_attempts

        for attempt in range(attempts):
            await self.rate_limiter.acquire()
            if board_id:
                await self.board_limiter(board_id).acquire()

            retry_after: float | None = None
            try:
                response = await run_sync_limited(
                    self._send, method, url, query, body
                )
            except (
                requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
            ) as e:
                error: TrelloSyncError = ConnectionLostError(
                    f"Connection to Trello failed for {path}: "
                    f"{self._redact(str(e))}",
                    path=path,
                )
            else:
                if response.ok:
                    return self._decode(response)
                error = error_for_status(
                    response.status_code, path, response.text
                )
                if not error.retryable:
                    raise error
                retry_after = self._get_retry_after(response)

            if attempt + 1 >= attempts:
                logger.error(
                    "%s %s failed after %d attempts: %s",
                    method,
                    path,
                    attempts,
                    error,
                )
                raise error

            delay = self._calculate_delay(attempt, retry_after)
            logger.warning(
                "%s %s failed (%s), retrying in %.2fs (attempt %d/%d)",
                method,
                path,
                error,
                delay,
                attempt + 1,
                attempts,
            )
            if on_retry is not None:
                on_retry(attempt + 1)
            await self._sleep(delay)

        # attempts >= 1 is enforced by validate_config
        raise ConnectionLostError(f"No attempt made for {path}", path=path)

    def _redact(self, text: str) -> str:
        """Hide credentials that requests echoes back in error messages."""
        for secret in (self.config.token, self.config.api_key):
            if secret:
                text = text.replace(secret, "***")
        return text

    def _decode(self, response: requests.Response) -> Any:
        if not response.text:
            return {}
        return response.json()

    def _calculate_delay(
        self, attempt: int, retry_after: float | None = None
    ) -> float:
        """
        Exponential backoff with jitter, or the server's Retry-After.

        Args:
            attempt: Zero-based attempt number that just failed.
            retry_after: Retry-After header value in seconds, if sent.
        """
        if retry_after is not None:
            base_delay = min(retry_after, self.max_delay)
        else:
            base_delay = min(
                self.initial_delay * (self.backoff_factor**attempt),
                self.max_delay,
            )
        jitter_range = base_delay * self.jitter
        return max(0.0, base_delay + random.uniform(-jitter_range, jitter_range))

    def _get_retry_after(self, response: requests.Response) -> float | None:
        retry_after = response.headers.get("Retry-After")
        if retry_after is None:
            return None
        try:
            return float(retry_after)
        except ValueError:
            # HTTP-date form is not used by Trello
            return None

    # ------------------------------------------------------------------
    # Convenience calls
    # ------------------------------------------------------------------

    async def validate_connection(self) -> str:
        """
        Validate credentials by fetching the token's member.
        Returns the member's username.
        """
        member = await self.request(
            "GET", "members/me", {"fields": "username,fullName"}
        )
        return str(member.get("username", ""))

    async def get_board(
        self,
        board_id: str,
        on_retry: Callable[[int], None] | None = None,
    ) -> dict[str, Any]:
        """Fetch a board with its open lists, open cards and all checklists."""
        return await self.request(
            "GET",
            f"boards/{board_id}",
            {
                "fields": BOARD_FIELDS,
                "lists": "open",
                "list_fields": LIST_FIELDS,
                "cards": "open",
                "card_fields": CARD_FIELDS,
                "checklists": "all",
                "checklist_fields": CHECKLIST_FIELDS,
            },
            board_id=board_id,
            on_retry=on_retry,
        )

    async def get_card(
        self,
        card_id: str,
        board_id: str | None = None,
        on_retry: Callable[[int], None] | None = None,
    ) -> dict[str, Any]:
        """Fetch a card with its checklists and their items."""
        return await self.request(
            "GET",
            f"cards/{card_id}",
            {
                "fields": CARD_FIELDS,
                "checklists": "all",
                "checklist_fields": CHECKLIST_FIELDS,
            },
            board_id=board_id,
            on_retry=on_retry,
        )

    async def create_board(self, name: str) -> dict[str, Any]:
        """Create an empty board (no default lists)."""
        return await self.request(
            "POST", "boards", body={"name": name, "defaultLists": False}
        )
