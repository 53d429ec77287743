"""Periodic audio level sampler, independent of any rendering loop."""
import asyncio
from typing import Callable, Optional

from voice_agent.core.config import settings
from voice_agent.core.logging import logger

LevelSource = Callable[[], float]
LevelCallback = Callable[[float], None]


class LevelSampler:
    """Reads input/output levels on a fixed tick and forwards them."""

    def __init__(
        self,
        input_source: LevelSource,
        on_input_level: LevelCallback,
        output_source: Optional[LevelSource] = None,
        on_output_level: Optional[LevelCallback] = None,
        interval_ms: Optional[int] = None
    ):
        """
        Args:
            input_source: Returns the current microphone level (0..1)
            on_input_level: Receives the input level every tick
            output_source: Returns the current assistant playback level
            on_output_level: Receives the output level every tick
            interval_ms: Tick period (defaults to settings.level_tick_interval_ms)
        """
        self.input_source = input_source
        self.on_input_level = on_input_level
        self.output_source = output_source
        self.on_output_level = on_output_level
        self.interval_ms = interval_ms or settings.level_tick_interval_ms
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> None:
        """Sample both levels once and deliver them."""
        self.ticks += 1
        if self.output_source is not None and self.on_output_level is not None:
            self.on_output_level(self.output_source())
        self.on_input_level(self.input_source())

    async def _run(self) -> None:
        interval = self.interval_ms / 1000.0
        try:
            while True:
                self.tick()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Level sampler stopped on error: {e}", exc_info=True)

    def start(self) -> None:
        """Start ticking on the running event loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Level sampler started ({self.interval_ms} ms tick)")

    async def stop(self) -> None:
        """Stop ticking; safe to call when never started."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Level sampler stopped after {self.ticks} ticks")
