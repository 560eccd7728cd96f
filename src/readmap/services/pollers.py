"""Background polling and request de-duplication."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from .fetch_client import FetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DedupingFetcher:
    """
    Collapse repeated requests for the same resource.

    While a request for a key is in flight, callers share it. After it
    succeeds, its result is reused for ``window_s`` seconds. Failures are
    never reused.
    """

    def __init__(self, window_s: float = 10.0, clock: Callable[[], float] = time.monotonic):
        self.window_s = window_s
        self._clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}
        self._recent: Dict[str, Tuple[float, Any]] = {}

    async def get(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        recent = self._recent.get(key)
        if recent is not None and self._clock() - recent[0] < self.window_s:
            logger.debug(f"Reusing {key} fetched {self._clock() - recent[0]:.1f}s ago")
            return recent[1]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._finish(key, t))
        else:
            logger.debug(f"Joining in-flight request for {key}")

        return await asyncio.shield(task)

    def _finish(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is None:
            self._recent[key] = (self._clock(), task.result())

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._recent.clear()
        else:
            self._recent.pop(key, None)


@dataclass
class PollerStatus:
    successes: int = 0
    failures: int = 0
    skipped: int = 0
    last_error: Optional[str] = None


class Poller(Generic[T]):
    """Fetch a resource on a fixed interval and hand the result to a callback."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        on_data: Callable[[T], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        interval_s: float = 60.0,
        is_active: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            name: Used in logs
            fetch: Coroutine producing fresh data
            on_data: Receives each successful result
            on_error: Receives the FetchError once retries are exhausted, or
                any other error raised while fetching or applying data
            interval_s: Delay between polls
            is_active: When it returns False the poll is skipped (e.g. tab not focused)
            sleep: Awaitable used between polls
        """
        self.name = name
        self.fetch = fetch
        self.on_data = on_data
        self.on_error = on_error
        self.interval_s = interval_s
        self.is_active = is_active
        self._sleep = sleep
        self.status = PollerStatus()
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> bool:
        """Run one poll. Returns True when fresh data was delivered."""
        if self.is_active is not None and not self.is_active():
            self.status.skipped += 1
            logger.debug(f"{self.name}: inactive, skipping poll")
            return False

        try:
            data = await self.fetch()
            self.on_data(data)
        except FetchError as e:
            logger.error(f"{self.name}: poll failed: {e}")
            self._record_failure(e)
            return False
        except Exception as e:
            # bad payloads must not end the polling loop
            logger.exception(f"{self.name}: could not apply poll result: {e}")
            self._record_failure(e)
            return False

        self.status.successes += 1
        self.status.last_error = None
        return True

    def _record_failure(self, error: Exception) -> None:
        self.status.failures += 1
        self.status.last_error = str(error)
        if self.on_error is not None:
            self.on_error(error)

    async def run(self) -> None:
        logger.info(f"{self.name}: polling every {self.interval_s:.0f}s")
        while True:
            await self.poll_once()
            await self._sleep(self.interval_s)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"{self.name}: polling task had failed: {e}")
