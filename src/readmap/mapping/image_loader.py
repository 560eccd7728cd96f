"""Bounded background loader for avatar sprites.

Images are fetched and rasterized with at most ``concurrency`` loads in
flight. Whenever a load finishes, successfully or not, its slot goes to the
next queued item, so the loader keeps exactly ``concurrency`` loads running
while there is queued work.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Iterable, Optional, Protocol, Set

from PIL import Image

from .sprites import DEFAULT_SPRITE_SIZE, FALLBACK_COLOR, make_fallback_sprite, render_circular_avatar

logger = logging.getLogger(__name__)

FetchBytes = Callable[[str], Awaitable[bytes]]


class SpriteSink(Protocol):
    """The part of the renderer the loader writes sprites into."""

    def has_sprite(self, name: str) -> bool: ...

    def add_sprite(self, name: str, image: Image.Image) -> None:
        """Register a sprite, replacing any existing one with the same name."""
        ...


@dataclass(frozen=True)
class ImageQueueItem:
    url: str
    sprite_name: str


@dataclass
class LoaderProgress:
    loaded: int
    total: int
    active: int


@dataclass
class LoadResult:
    """Outcome of one load: a sprite, or the reason to fall back."""

    item: ImageQueueItem
    sprite: Optional[Image.Image] = None
    fallback_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.sprite is not None


class BoundedImageLoader:
    """Work-conserving image queue with a hard concurrency cap."""

    def __init__(
        self,
        sink: SpriteSink,
        fetch_bytes: FetchBytes,
        concurrency: int = 5,
        sprite_size: int = DEFAULT_SPRITE_SIZE,
        fallback_color: str = FALLBACK_COLOR,
        timeout_s: Optional[float] = 15.0,
    ):
        """
        Args:
            sink: Receives finished sprites (normally the map renderer)
            fetch_bytes: Coroutine returning raw image bytes for a URL
            concurrency: Max loads in flight
            sprite_size: Edge of the square sprite in pixels
            fallback_color: Fill of the circle used when a load fails
            timeout_s: Per-image bound on fetch time (None = unbounded)
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        self.sink = sink
        self.fetch_bytes = fetch_bytes
        self.concurrency = concurrency
        self.sprite_size = sprite_size
        self.fallback_color = fallback_color
        self.timeout_s = timeout_s

        self.queue: Deque[ImageQueueItem] = deque()
        self.active = 0
        self.loaded = 0
        self.total = 0
        self.states: Dict[str, str] = {}  # sprite_name -> queued | loading | succeeded | failed

        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # ── Public API ───────────────────────────────────────────────────

    @property
    def is_idle(self) -> bool:
        return self.active == 0 and not self.queue

    def enqueue(self, items: Iterable[ImageQueueItem]) -> None:
        """
        Queue images for background loading.

        Returns immediately. Items join the current run when one is in
        progress; otherwise a new run starts with fresh progress counters.
        Must be called from within a running event loop.
        """
        items = list(items)
        if not items:
            return

        if self.is_idle:
            self.loaded = 0
            self.total = 0

        self.queue.extend(items)
        self.total += len(items)
        for item in items:
            self.states[item.sprite_name] = "queued"
        self._idle.clear()

        logger.debug(f"Queued {len(items)} avatar image(s) for background load ({len(self.queue)} waiting)")
        self._pump()

    def progress(self) -> LoaderProgress:
        return LoaderProgress(loaded=self.loaded, total=self.total, active=self.active)

    async def wait_idle(self) -> None:
        """Wait until every queued image has been loaded or replaced by a fallback."""
        await self._idle.wait()

    # ── Scheduler ────────────────────────────────────────────────────

    def _pump(self) -> None:
        """Admit queued items until the concurrency cap is reached."""
        while self.queue and self.active < self.concurrency:
            item = self.queue.popleft()
            self.active += 1
            self.states[item.sprite_name] = "loading"
            task = asyncio.get_running_loop().create_task(self._run(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, item: ImageQueueItem) -> None:
        try:
            result = await self._load(item)
            self._apply(result)
        finally:
            self.loaded += 1
            self.active -= 1
            self._pump()
            if self.is_idle:
                logger.info(f"Image queue completed: {self.loaded}/{self.total} loaded")
                self._idle.set()

    async def _load(self, item: ImageQueueItem) -> LoadResult:
        try:
            if self.timeout_s is not None:
                data = await asyncio.wait_for(self.fetch_bytes(item.url), self.timeout_s)
            else:
                data = await self.fetch_bytes(item.url)
            # decode and resize in a worker thread; sprites are registered on the loop in _apply
            sprite = await asyncio.to_thread(render_circular_avatar, data, self.sprite_size)
        except Exception as e:
            # fetch, timeout, decode and processing errors all fall back
            return LoadResult(item=item, fallback_reason=f"{type(e).__name__}: {e}")
        return LoadResult(item=item, sprite=sprite)

    def _apply(self, result: LoadResult) -> None:
        name = result.item.sprite_name
        try:
            if result.ok:
                self.sink.add_sprite(name, result.sprite)
                self.states[name] = "succeeded"
                return

            logger.warning(f"Failed to load avatar {result.item.url}: {result.fallback_reason}")
            self.states[name] = "failed"
            if not self.sink.has_sprite(name):
                self.sink.add_sprite(name, make_fallback_sprite(self.sprite_size, self.fallback_color))
        except Exception as e:
            logger.error(f"Could not register sprite {name}: {e}")
            self.states[name] = "failed"
