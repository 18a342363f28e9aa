import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL_SECONDS = 5.0


class KeepaliveTicker:
    """Invokes ``on_tick`` every ``interval`` seconds until stopped.

    Ticks are unconditional: they are not suppressed while audio is flowing.
    ``stop`` only stops scheduling; it does not wait for a tick in flight,
    and that tick is cancelled at its next await point.
    """

    def __init__(
        self,
        on_tick: Callable[[], Awaitable[None]],
        interval: float = DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
    ) -> None:
        if interval <= 0:
            raise ValueError("Keepalive interval must be positive")
        self._on_tick = on_tick
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._tick_count = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def start(self) -> None:
        if self.active:
            raise RuntimeError("Keepalive ticker is already running")
        self._task = asyncio.create_task(self._run())
        logger.debug("Keepalive ticker started (interval=%.1fs)", self._interval)

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.debug("Keepalive ticker stopped after %d ticks", self._tick_count)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._tick_count += 1
            try:
                await self._on_tick()
            except Exception:
                logger.warning("Keepalive tick failed", exc_info=True)
