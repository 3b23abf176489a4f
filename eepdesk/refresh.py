"""
Access token renewal

RefreshCoordinator  - single-flight exchange of the refresh token. However
                      many requests discover an expired token at the same
                      time, exactly one exchange runs and everybody waits
                      on its outcome.
TokenRefreshScheduler - renews the token shortly before it expires, through
                      the same coordinator.

States:
    IDLE ──(first caller needing a token)──> REFRESHING
    REFRESHING ──(new access token stored, waiters resolved)──> IDLE
    REFRESHING ──(session torn down, waiters rejected)──> IDLE
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from eepdesk.exceptions import SessionExpiredError
from eepdesk.logging_config import get_logger
from eepdesk.token_store import TokenStore, decode_token_expiry

logger = get_logger(__name__)

TokenExchange = Callable[[str], Awaitable[str]]


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """
    Multiplexes concurrent token requests onto one refresh exchange.

    Usage:
        coordinator = RefreshCoordinator(exchange, token_store, on_session_expired)
        token = await coordinator.acquire_token(stale_token=token_used_by_request)
    """

    def __init__(
        self,
        exchange: TokenExchange,
        token_store: TokenStore,
        on_session_expired: Optional[Callable[[], None]] = None,
        timeout: Optional[float] = None,
    ):
        self._exchange = exchange
        self.token_store = token_store
        self.on_session_expired = on_session_expired
        self.timeout = timeout
        self._inflight: Optional[asyncio.Task] = None
        self._waiters = 0

    @property
    def state(self) -> RefreshState:
        return RefreshState.REFRESHING if self._inflight is not None else RefreshState.IDLE

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None

    @property
    def pending(self) -> int:
        """Callers queued behind the exchange in flight"""
        return self._waiters

    async def acquire_token(self, stale_token: Optional[str] = None) -> str:
        """
        Return a fresh access token, refreshing if needed.

        `stale_token` is the token the caller's rejected request carried. If
        the store already holds a different one, a refresh finished while
        that request was in flight and no new exchange is needed.
        """
        if self._inflight is not None:
            return await self._join()

        current = self.token_store.access_token
        if stale_token is not None and current and current != stale_token:
            return current

        refresh_token = self.token_store.refresh_token
        if not refresh_token:
            self._teardown("no refresh token")
            raise SessionExpiredError()

        self._inflight = asyncio.ensure_future(self._refresh(refresh_token))
        return await asyncio.shield(self._inflight)

    async def wait_for_refresh(self) -> Optional[str]:
        """Wait for the exchange in flight, if any, and return the current token"""
        if self._inflight is None:
            return self.token_store.access_token
        return await self._join()

    async def _join(self) -> str:
        self._waiters += 1
        try:
            return await asyncio.shield(self._inflight)
        finally:
            self._waiters -= 1

    async def _refresh(self, refresh_token: str) -> str:
        logger.debug("Refreshing access token")
        try:
            try:
                if self.timeout:
                    access_token = await asyncio.wait_for(self._exchange(refresh_token), self.timeout)
                else:
                    access_token = await self._exchange(refresh_token)
            except SessionExpiredError as e:
                self._teardown(e.message)
                raise
            except asyncio.TimeoutError as e:
                self._teardown("timed out")
                raise SessionExpiredError("Timed out while refreshing your session. Please log in again.") from e
            except Exception as e:
                self._teardown(str(e))
                raise SessionExpiredError(f"Could not refresh your session ({e}). Please log in again.") from e

            self.token_store.set_access_token(access_token)
            logger.log_auth_event("token_refresh", True, waiters=self._waiters)
            return access_token
        finally:
            self._inflight = None

    def _teardown(self, reason: str) -> None:
        logger.log_auth_event("token_refresh", False, reason=reason, waiters=self._waiters)
        self.token_store.clear()
        if self.on_session_expired is not None:
            self.on_session_expired()


class TokenRefreshScheduler:
    """
    Renews the access token `buffer_seconds` before it expires.

    Tokens without a readable `exp` claim arm nothing; the reactive 401
    path still covers them.
    """

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        buffer_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.coordinator = coordinator
        self.buffer_seconds = buffer_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def is_scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, access_token: str) -> Optional[float]:
        """Arm the renewal timer; returns the delay in seconds, or None"""
        self.cancel()

        expires_at = decode_token_expiry(access_token)
        if expires_at is None:
            logger.warning("Invalid or missing expiration in token; proactive refresh disabled")
            return None

        delay = expires_at - self.clock() - self.buffer_seconds
        if delay <= 0:
            return None

        self._task = asyncio.get_running_loop().create_task(self._run(delay))
        logger.debug(f"Token refresh scheduled in {delay:.0f}s")
        return delay

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            access_token = await self.coordinator.acquire_token()
        except SessionExpiredError as e:
            # The coordinator already tore the session down
            logger.warning(f"Failed to refresh token proactively: {e.message}")
            self._task = None
            return

        self._task = None
        self.schedule(access_token)
