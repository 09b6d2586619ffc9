"""
Shared HTTP plumbing for game providers.

Provides:
    - The provider error taxonomy (transient, rate-limited, malformed)
    - ProviderGate: minimum request spacing plus a shared cooldown
      deadline that every caller of one provider waits on
    - ProviderClient: async aiohttp client with retries that all
      adapters and the remote evaluation engine build on
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60.0


class ProviderError(Exception):
    """Base exception for provider API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(ProviderError):
    """Timeouts, connection resets and 5xx responses that outlived retries."""
    pass


class RateLimitedError(ProviderError):
    """Provider asked us to back off (429 or an explicit signal)."""

    def __init__(self, message: str, retry_after: float = DEFAULT_RETRY_AFTER_SECONDS):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class NotFoundError(ProviderError):
    """Requested resource does not exist upstream."""
    pass


class MalformedRecordError(Exception):
    """An upstream record could not be turned into a usable game."""

    def __init__(self, reason: str, game_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.game_id = game_id


def parse_retry_after(value: Optional[str], default: float = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return seconds if seconds > 0 else default


class ProviderGate:
    """
    Per-provider request gate.

    Enforces a minimum interval between requests unconditionally, and a
    cooldown deadline set by any rate-limit signal. The deadline only
    moves forward: trip() keeps the later of the current and new deadline.
    Callers queue on one lock, so spacing holds across pools.
    """

    def __init__(
        self,
        name: str,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None
        self._cooldown_until = 0.0
        self.trip_count = 0

    @property
    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    @property
    def is_cooling_down(self) -> bool:
        return self.cooldown_remaining > 0

    def trip(self, retry_after: float) -> None:
        """Push the shared cooldown deadline out to now + retry_after."""
        deadline = self._clock() + retry_after
        if deadline > self._cooldown_until:
            self._cooldown_until = deadline
        self.trip_count += 1
        logger.warning(f"{self.name}: rate limited, cooling down for {self.cooldown_remaining:.1f}s")

    def _wait_time(self) -> float:
        now = self._clock()
        wait = self._cooldown_until - now
        if self._last_request_at is not None:
            wait = max(wait, self._last_request_at + self.min_interval - now)
        return wait

    async def acquire(self) -> None:
        """Wait until a request to this provider is allowed."""
        async with self._lock:
            # Re-check after every sleep; a trip may have moved the deadline
            while True:
                wait = self._wait_time()
                if wait <= 0:
                    break
                await self._sleep(wait)
            self._last_request_at = self._clock()

    def to_dict(self) -> dict:
        return {
            "provider": self.name,
            "min_interval_seconds": self.min_interval,
            "cooldown_remaining_seconds": round(self.cooldown_remaining, 1),
            "trip_count": self.trip_count,
        }


class ProviderClient:
    """
    Async HTTP client bound to one ProviderGate.

    Features:
        - Every request passes through the provider gate
        - 429 trips the gate and raises RateLimitedError without retrying
        - 5xx, timeouts and connection errors retry with exponential backoff
        - Other 4xx fail immediately

    Usage:
        async with LichessClient(gate) as client:
            games = await client.fetch_batch(pool_config, exclude_ids)
    """

    def __init__(
        self,
        gate: ProviderGate,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        user_agent: str = "game-benchmark-pipeline/0.1",
    ):
        self.gate = gate
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._headers = {"User-Agent": user_agent}

    async def __aenter__(self) -> "ProviderClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        url: str,
        as_text: bool = False,
        **kwargs,
    ) -> Any:
        """
        Make an HTTP request through the gate with retries.

        Returns:
            Parsed JSON, or the body text when as_text is set

        Raises:
            RateLimitedError: Provider returned 429 (gate already tripped)
            NotFoundError: 404
            ProviderError: Other 4xx
            TransientNetworkError: Retries exhausted on 5xx/timeouts/connection errors
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
            self._owns_session = True

        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                await self.gate.acquire()

                async with self._session.request(method, url, **kwargs) as response:
                    if response.status == 429:
                        retry_after = parse_retry_after(response.headers.get("Retry-After"))
                        self.gate.trip(retry_after)
                        raise RateLimitedError(
                            f"{self.gate.name} rate limit exceeded",
                            retry_after=retry_after,
                        )

                    if response.status == 404:
                        raise NotFoundError(f"Not found: {url}", status_code=404)

                    # 4xx client errors - don't retry
                    if 400 <= response.status < 500:
                        text = await response.text()
                        raise ProviderError(
                            f"API error: {response.status} - {text[:200]}",
                            status_code=response.status,
                        )

                    # 5xx server errors - retry
                    if response.status >= 500:
                        text = await response.text()
                        raise TransientNetworkError(
                            f"Server error: {response.status} - {text[:200]}",
                            status_code=response.status,
                        )

                    if as_text:
                        return await response.text()
                    return await response.json(content_type=None)

            except (RateLimitedError, NotFoundError):
                raise

            except TransientNetworkError as e:
                last_error = e
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    f"{self.gate.name}: server error {e.status_code}, "
                    f"retry {attempt + 1}/{self._max_retries}"
                )
                await asyncio.sleep(delay)

            except ProviderError:
                raise

            except asyncio.TimeoutError:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    f"{self.gate.name}: request timeout, retry {attempt + 1}/{self._max_retries}"
                )
                await asyncio.sleep(delay)
                last_error = TransientNetworkError("Request timed out")

            except asyncio.CancelledError:
                logger.debug("Request cancelled")
                raise

            except aiohttp.ClientError as e:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    f"{self.gate.name}: request failed: {e}, retry {attempt + 1}/{self._max_retries}"
                )
                await asyncio.sleep(delay)
                last_error = TransientNetworkError(str(e))

        raise last_error or TransientNetworkError("Request failed after retries")
