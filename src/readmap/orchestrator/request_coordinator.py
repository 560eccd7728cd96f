"""Last-request-wins coordination for per-country fetches.

A user can click country A and then country B before A's readings arrive.
Every fetch carries the key it was issued for, and its result is applied
only if that key is still the current one when the result lands. There is
no cancellation: superseded fetches run to completion and their results are
dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from ..models.schemas import Reading

logger = logging.getLogger(__name__)

K = TypeVar("K")
R = TypeVar("R")


class StaleGuardedRequestCoordinator(Generic[K, R]):
    """Apply async results only while their request key is current."""

    def __init__(
        self,
        fetch: Callable[[K], Awaitable[R]],
        apply: Callable[[K, R], None],
        apply_error: Optional[Callable[[K, Exception], None]] = None,
    ):
        """
        Args:
            fetch: Per-key fetch coroutine
            apply: Writes a fresh result into shared UI state
            apply_error: Writes a fetch failure into shared UI state
        """
        self.fetch = fetch
        self.apply = apply
        self.apply_error = apply_error
        self.current: Optional[K] = None
        self.discarded = 0

    def request(self, key: K) -> asyncio.Task:
        """Make ``key`` current and start its fetch in the background."""
        self.current = key
        return asyncio.get_running_loop().create_task(self._fetch_and_apply(key))

    def close(self) -> None:
        """Forget the current key; any result still in flight will be dropped."""
        self.current = None

    def is_current(self, key: K) -> bool:
        return self.current is not None and self.current == key

    def on_result(self, key: K, result: R) -> bool:
        if not self.is_current(key):
            self.discarded += 1
            logger.debug(f"Result for {key} is stale (current: {self.current}), ignored")
            return False
        self.apply(key, result)
        return True

    def on_error(self, key: K, error: Exception) -> bool:
        if not self.is_current(key):
            self.discarded += 1
            logger.debug(f"Error for {key} is stale (current: {self.current}), ignored: {error}")
            return False
        if self.apply_error is not None:
            self.apply_error(key, error)
        return True

    async def _fetch_and_apply(self, key: K) -> None:
        try:
            result = await self.fetch(key)
        except Exception as e:
            logger.error(f"Fetch for {key} failed: {e}")
            self.on_error(key, e)
            return
        self.on_result(key, result)


# ── Country popup ────────────────────────────────────────────────────


@dataclass
class PopupState:
    """Content of the single open country popup."""

    iso3: str
    display_name: str
    anchor_position: Tuple[float, float]  # screen pixels of the click
    readers: List[Reading] = field(default_factory=list)
    loading: bool = True
    error: Optional[str] = None


class PopupCoordinator:
    """Owns the current PopupState and fills it from stale-guarded fetches."""

    def __init__(
        self,
        fetch_readings: Callable[[str], Awaitable[List[Reading]]],
        country_names: Optional[Dict[str, str]] = None,
    ):
        self.country_names = country_names or {}
        self.popup: Optional[PopupState] = None
        self._guard: StaleGuardedRequestCoordinator[str, List[Reading]] = StaleGuardedRequestCoordinator(
            fetch_readings, self._apply_readings, self._apply_error
        )

    @property
    def discarded(self) -> int:
        return self._guard.discarded

    def open(self, iso3: str, position: Tuple[float, float]) -> asyncio.Task:
        """Replace any open popup with a loading popup for ``iso3``."""
        self.popup = PopupState(
            iso3=iso3,
            display_name=self.country_names.get(iso3, iso3),
            anchor_position=position,
        )
        return self._guard.request(iso3)

    def close(self) -> None:
        self.popup = None
        self._guard.close()

    def _apply_readings(self, iso3: str, readers: List[Reading]) -> None:
        if self.popup is None or self.popup.iso3 != iso3:
            return
        self.popup.readers = list(readers)
        self.popup.error = None
        self.popup.loading = False

    def _apply_error(self, iso3: str, error: Exception) -> None:
        if self.popup is None or self.popup.iso3 != iso3:
            return
        self.popup.readers = []
        self.popup.error = str(error)
        self.popup.loading = False
