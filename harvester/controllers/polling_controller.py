# harvester/controllers/polling_controller.py
"""
Background poller that keeps the database in step with the channel.

The poller waits until the Telegram session is authorized, then repeatedly
runs ingestion cycles. It polls faster while messages keep arriving and backs
off after a stretch of silence. Cycle failures are logged and treated as
"nothing new"; only ``stop()`` ends the loop.
"""
import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from harvester.config import Settings
from harvester.controllers.ingestion_controller import CycleResult, IngestionController
from harvester.errors import HarvesterError, TransientSourceError
from harvester.services.telegram_service import TelegramService

logger = logging.getLogger(__name__)


class PollingPhase(str, enum.Enum):
    NOT_STARTED = "not_started"
    AWAITING_READY = "awaiting_ready"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass(frozen=True)
class IntervalPolicy:
    initial: float = 5.0
    minimum: float = 1.0
    maximum: float = 60.0
    speedup: float = 0.75
    slowdown: float = 1.5
    silence_threshold: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "IntervalPolicy":
        return cls(
            initial=settings.polling_initial_interval,
            minimum=settings.polling_min_interval,
            maximum=settings.polling_max_interval,
            speedup=settings.polling_speedup_factor,
            slowdown=settings.polling_slowdown_factor,
            silence_threshold=settings.polling_silence_threshold,
        )

    def next_interval(
        self, interval: float, had_new_data: bool, last_activity_time: Optional[float], now: float
    ) -> float:
        if had_new_data:
            return max(self.minimum, interval * self.speedup)
        if last_activity_time is not None and now - last_activity_time > self.silence_threshold:
            return min(self.maximum, interval * self.slowdown)
        return interval


@dataclass
class PollingState:
    phase: PollingPhase = PollingPhase.NOT_STARTED
    interval: float = 5.0
    last_activity_time: Optional[float] = None
    cursor: Optional[int] = None
    cycles: int = 0
    last_error: Optional[str] = None
    retry_after: Optional[float] = None

    @property
    def is_polling(self) -> bool:
        return self.phase == PollingPhase.POLLING


class PollingManager:
    def __init__(
        self,
        telegram_service: TelegramService,
        ingestion: IngestionController,
        policy: Optional[IntervalPolicy] = None,
        probe_interval: float = 5.0,
        track_attempts_as_activity: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.telegram_service = telegram_service
        self.ingestion = ingestion
        self.policy = policy or IntervalPolicy()
        self.probe_interval = probe_interval
        self.track_attempts_as_activity = track_attempts_as_activity
        self.clock = clock
        self.state = PollingState(interval=self.policy.initial)
        self._stop_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        # Set once the running loop has passed the readiness wait
        self._ready = False

    @classmethod
    def from_settings(cls, settings: Settings, telegram_service: TelegramService, ingestion: IngestionController):
        return cls(
            telegram_service,
            ingestion,
            policy=IntervalPolicy.from_settings(settings),
            probe_interval=settings.readiness_probe_interval,
            track_attempts_as_activity=settings.polling_track_attempts_as_activity,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Optional[asyncio.Task]:
        """Start the polling loop in the background. Must be called from the event loop."""
        if self.is_running:
            if not self._stop_requested.is_set():
                logger.warning("Polling already running, skipping start.")
                return self._task
            # Stopped but the loop is still finishing a cycle: keep that loop going
            self._stop_requested.clear()
            self.state.phase = PollingPhase.POLLING if self._ready else PollingPhase.AWAITING_READY
            logger.info("Polling resumed.")
            return self._task

        self._stop_requested.clear()
        self._ready = False
        self.state = PollingState(phase=PollingPhase.AWAITING_READY, interval=self.policy.initial)
        self._task = asyncio.create_task(self.run(), name="telegram-polling")
        return self._task

    def stop(self):
        """Stop after the current cycle. An in-flight fetch or store is not cancelled."""
        if self.state.phase == PollingPhase.NOT_STARTED:
            logger.debug("Polling was never started, nothing to stop.")
            return
        self._stop_requested.set()
        self.state.phase = PollingPhase.STOPPED
        logger.info("Polling stopped.")

    async def wait_stopped(self, timeout: Optional[float] = None):
        if self._task is None or self._task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            logger.warning("Polling did not finish within %ss, cancelling.", timeout)
            self._task.cancel()

    async def run(self):
        if self.state.phase == PollingPhase.NOT_STARTED:
            self.state.phase = PollingPhase.AWAITING_READY
        cursor = await self._await_ready()
        if self._stop_requested.is_set():
            return

        self._ready = True
        self.state.phase = PollingPhase.POLLING
        self.state.cursor = cursor
        if not self.track_attempts_as_activity:
            self.state.last_activity_time = self.clock()
        logger.info("Telegram is ready. Polling from message id %s.", cursor)

        while True:
            delay = self._next_delay()
            logger.debug("Scheduling next poll in %.2fs", delay)
            await self._sleep(delay)
            if self._stop_requested.is_set():
                break

            result = await self.poll_once(self.state.cursor)
            self.state.cursor = result.new_cursor

    async def _await_ready(self) -> Optional[int]:
        while not self._stop_requested.is_set():
            if await self.telegram_service.is_ready():
                try:
                    return await self.ingestion.prepare()
                except HarvesterError as e:
                    logger.error("Could not prepare channel for polling: %s", e)
            else:
                logger.warning("Telegram is not ready. Retrying in %ss...", self.probe_interval)
            await self._sleep(self.probe_interval)
        return None

    async def poll_once(self, since: Optional[int]) -> CycleResult:
        """Run one ingestion cycle and adjust the interval. Never raises."""
        logger.info("Polling for new messages since %s", since)
        try:
            result = await self.ingestion.run_cycle(since)
        except HarvesterError as e:
            logger.error("Polling cycle failed: %s", e)
            result = CycleResult(new_cursor=since, had_new_data=False, error=e)
        except Exception as e:
            logger.exception("Unexpected error in polling cycle; polling will continue")
            result = CycleResult(new_cursor=since, had_new_data=False, error=HarvesterError(str(e)))

        self.state.cycles += 1
        error = result.error
        self.state.last_error = str(error) if error else None
        self.state.retry_after = (
            float(error.retry_after) if isinstance(error, TransientSourceError) and error.retry_after else None
        )
        self._record_activity(result)
        return result

    def _record_activity(self, result: CycleResult):
        now = self.clock()
        if self.track_attempts_as_activity and result.error is None:
            self.state.last_activity_time = now

        old = self.state.interval
        self.state.interval = self.policy.next_interval(
            old, result.had_new_data, self.state.last_activity_time, now
        )
        if result.had_new_data:
            self.state.last_activity_time = now
        logger.info("Interval: %.2fs -> %.2fs", old, self.state.interval)

    def _next_delay(self) -> float:
        if self.state.retry_after:
            return max(self.state.interval, self.state.retry_after)
        return self.state.interval

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
