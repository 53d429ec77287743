"""Voice-activity-triggered interruption of in-flight responses."""
import time
from typing import Optional

from voice_agent.core.config import settings
from voice_agent.core.logging import logger

DEBUG_LOG_INTERVAL_SECONDS = 0.5


class VoiceActivityInterrupter:
    """
    Debounced speaking detector over a periodic input level signal.

    Each tick moves a counter up (level above threshold) or down (floored
    at zero). Reaching ``trigger_count`` while a response is active fires
    one interruption and resets the counter. After firing, the detector
    stays disarmed until it has seen both a tick with no active response
    and a tick below the threshold, so one sustained episode cancels once
    even if the user keeps talking across the end of the response.
    """

    def __init__(
        self,
        threshold: Optional[float] = None,
        trigger_count: Optional[int] = None,
        enabled: Optional[bool] = None
    ):
        """
        Args:
            threshold: Input level (0..1) above which a tick counts as speech
            trigger_count: Consecutive-ish speech ticks needed to interrupt
            enabled: Interruption policy switch
        """
        self.threshold = settings.voice_activity_threshold if threshold is None else threshold
        self.trigger_count = settings.voice_activity_trigger_count if trigger_count is None else trigger_count
        self.enabled = settings.voice_interruption_enabled if enabled is None else enabled
        self.counter = 0
        self.armed = True
        self._saw_idle = False
        self._saw_quiet = False
        self._last_debug_log = 0.0

        if self.trigger_count < 1:
            raise ValueError(f"trigger_count must be >= 1, got {self.trigger_count}")

    def tick(self, level: float, response_active: bool) -> bool:
        """
        Process one sampling tick.

        Args:
            level: Current input level in [0, 1]
            response_active: Whether a cancellable response is in flight

        Returns:
            True if this tick triggers an interruption
        """
        if not self.enabled:
            return False

        self._log_state(level, response_active)

        if not self.armed:
            self._saw_idle = self._saw_idle or not response_active
            self._saw_quiet = self._saw_quiet or level <= self.threshold
            self.armed = self._saw_idle and self._saw_quiet

        if level > self.threshold:
            if self.counter < self.trigger_count:
                self.counter += 1
            if self.counter >= self.trigger_count and response_active and self.armed:
                logger.info(
                    f"User voice detected during AI response - interrupting "
                    f"(level={level:.4f}, ticks={self.counter})"
                )
                self.counter = 0
                self.armed = False
                self._saw_idle = False
                self._saw_quiet = False
                return True
        else:
            self.counter = max(0, self.counter - 1)

        return False

    def reset(self) -> None:
        self.counter = 0
        self.armed = True
        self._saw_idle = False
        self._saw_quiet = False

    def _log_state(self, level: float, response_active: bool) -> None:
        now = time.monotonic()
        if now - self._last_debug_log < DEBUG_LOG_INTERVAL_SECONDS:
            return
        self._last_debug_log = now
        logger.debug(
            f"Voice activity: level={level:.4f} threshold={self.threshold} "
            f"above={level > self.threshold} counter={self.counter} "
            f"response_active={response_active}"
        )
