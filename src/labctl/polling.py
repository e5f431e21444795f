"""Bounded readiness polling.

Every "wait until X holds" in the lifecycle goes through
:class:`ReadinessPoller`: cluster activation, node readiness, component
pods, and namespace shutdown.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple, Type

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_delay,
    stop_when_event_set,
    wait_fixed,
)

from labctl.core.errors import ReadinessCancelled, ReadinessFatal, ReadinessTimeout

logger = structlog.get_logger()


class PollStatus(str, Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    FATAL = "fatal"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollResult:
    """Outcome of a single readiness check."""

    status: PollStatus
    detail: str = ""

    @classmethod
    def ready(cls, detail: str = "") -> PollResult:
        return cls(PollStatus.READY, detail)

    @classmethod
    def not_ready(cls, detail: str = "") -> PollResult:
        return cls(PollStatus.NOT_READY, detail)

    @classmethod
    def fatal(cls, detail: str) -> PollResult:
        return cls(PollStatus.FATAL, detail)

    @property
    def is_ready(self) -> bool:
        return self.status is PollStatus.READY


Check = Callable[[], Awaitable[PollResult]]
ProgressCallback = Callable[[str, str], None]


class ReadinessPoller:
    """Repeats a readiness check until it is ready, fatal, timed out or cancelled.

    The check runs immediately, then every ``interval`` seconds. A
    ``timeout`` of zero therefore performs exactly one check. Setting
    ``cancel_event`` stops the loop at the next attempt boundary and
    interrupts any sleep in progress.
    """

    def __init__(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.cancel_event = cancel_event or asyncio.Event()
        self.on_progress = on_progress

    def cancel(self) -> None:
        self.cancel_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def poll_until(
        self,
        check: Check,
        *,
        interval: float,
        timeout: float,
        description: str,
        transient: Tuple[Type[BaseException], ...] = (),
    ) -> PollResult:
        """Run ``check`` until it reports ready.

        Raises:
            ReadinessFatal: the check reported an unrecoverable state
            ReadinessTimeout: ``timeout`` seconds elapsed without readiness
            ReadinessCancelled: the cancel event was set
        """
        started = time.monotonic()
        attempts = 0

        async def attempt() -> PollResult:
            nonlocal attempts
            if self.cancel_event.is_set():
                return PollResult(PollStatus.CANCELLED)
            attempts += 1
            try:
                return await check()
            except transient as e:
                return PollResult.not_ready(f"{type(e).__name__}: {e}")

        def report(retry_state: RetryCallState) -> None:
            detail = retry_state.outcome.result().detail if retry_state.outcome else ""
            logger.info("waiting", target=description, detail=detail, attempt=attempts)
            if self.on_progress:
                self.on_progress(description, detail)

        retrying = AsyncRetrying(
            retry=retry_if_result(lambda r: r.status is PollStatus.NOT_READY),
            stop=stop_after_delay(timeout) | stop_when_event_set(self.cancel_event),
            wait=wait_fixed(interval),
            sleep=self._sleep,
            before_sleep=report,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        result: PollResult = await retrying(attempt)
        elapsed = time.monotonic() - started

        if result.status is PollStatus.READY:
            logger.info("ready", target=description, elapsed=round(elapsed, 1), attempts=attempts)
            return result
        if result.status is PollStatus.FATAL:
            raise ReadinessFatal(
                f"{description} failed: {result.detail}",
                details={"target": description, "elapsed_seconds": round(elapsed, 1)},
            )
        if result.status is PollStatus.CANCELLED or self.cancel_event.is_set():
            raise ReadinessCancelled(
                f"Stopped waiting for {description}",
                details={"target": description, "elapsed_seconds": round(elapsed, 1)},
            )
        raise ReadinessTimeout(description, elapsed, result.detail or None)
