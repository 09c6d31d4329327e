from __future__ import annotations
import asyncio, enum, logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from ..domain.models import Termination
from .pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class SupervisorState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    BACKOFF = "backoff"


class Session(Protocol):
    async def run(self) -> Termination: ...


@dataclass(slots=True, frozen=True)
class FixedDelay:
    """Same delay before every restart: no growth, no jitter, no attempt cap."""
    seconds: float = 5.0

    def __call__(self, attempt: int) -> float:
        return self.seconds


class ReconnectSupervisor:
    """
    Runs sessions back to back forever: Idle -> Running -> Backoff -> Running ...
    Only `stop` being set (or task cancellation) ends the loop. Setting `stop`
    cancels a running session or backoff sleep right away.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        delay: Callable[[int], float] = FixedDelay(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        pipeline: IngestionPipeline | None = None,
        stop: asyncio.Event | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.delay = delay
        self.sleep = sleep
        self.pipeline = pipeline
        self.stop = stop or asyncio.Event()
        self.state = SupervisorState.IDLE
        self.restarts = 0
        self.last_termination: Termination | None = None

    async def run(self) -> None:
        try:
            while not self.stop.is_set():
                if self.pipeline is not None and not self.pipeline.alive:
                    self.pipeline.respawn()

                self.state = SupervisorState.RUNNING
                term = await self._run_one()
                self.last_termination = term
                if self.stop.is_set():
                    break

                self.state = SupervisorState.BACKOFF
                wait_s = self.delay(self.restarts + 1)
                logger.warning(
                    "session terminated (%s%s) after %d trades; reconnecting in %.1fs",
                    term.reason, f": {term.error}" if term.error else "", term.processed, wait_s,
                )
                if not await self._until_stopped(self.sleep(wait_s)):
                    break
                self.restarts += 1
        finally:
            self.state = SupervisorState.IDLE

    async def _until_stopped(self, aw: Awaitable) -> bool:
        """Await `aw` unless `stop` fires first. False when it was cut short."""
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self.stop.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if task.cancelled():
            return False
        task.result()
        return True

    async def _run_one(self) -> Termination:
        try:
            task = asyncio.ensure_future(self.session_factory().run())
            if not await self._until_stopped(task):
                logger.info("stop requested; session cancelled")
                return Termination(reason="stream_ended", error="stopped")
            return task.result()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("session crashed")
            return Termination(reason="transport_error", error=f"{type(e).__name__}: {e}")
