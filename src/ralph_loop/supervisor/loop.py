"""Top-level supervisor loop with lock, retention and circuit breaker."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

from ralph_loop.config import Settings
from ralph_loop.supervisor.lock import LoopLock
from ralph_loop.supervisor.models import IterationOutcome, IterationReport
from ralph_loop.supervisor.retention import LogRetentionManager

logger = logging.getLogger(__name__)


class IterationRunner(Protocol):
    def run(
        self,
        *,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> IterationReport:
        """Run exactly one iteration."""


@dataclass(slots=True)
class LoopSummary:
    """Aggregate loop counters for CLI reporting."""

    cycles: int = 0
    succeeded: int = 0
    no_work: int = 0
    failed: int = 0
    skipped: int = 0
    cooldowns: int = 0


class SupervisorLoop:
    """Runs iterations forever, one at a time, under the project lock."""

    def __init__(
        self,
        *,
        settings: Settings,
        lock: LoopLock,
        iteration: IterationRunner,
        retention: LogRetentionManager | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.settings = settings
        self.lock = lock
        self.iteration = iteration
        self.retention = retention or LogRetentionManager()
        self._sleep = sleep or self._sleep_with_stop
        self.consecutive_failures = 0
        self._stop_requested = False
        self._stop_signal_name: str | None = None
        self.last_report: IterationReport | None = None

    def stop_requested(self) -> bool:
        return self._stop_requested

    def run(self, *, max_cycles: int | None = None) -> LoopSummary:
        """Loop until interrupted, or for ``max_cycles`` cycles when given."""

        summary = LoopSummary()
        with self._signal_handlers():
            while not self._stop_requested:
                self.run_cycle(summary)
                if self._stop_requested:
                    break
                if max_cycles is not None and summary.cycles >= max_cycles:
                    break
                logger.info(
                    "Sleeping %s seconds before next iteration...",
                    self.settings.loop.sleep_seconds,
                )
                self._sleep(self.settings.loop.sleep_seconds)

        if self._stop_requested:
            logger.info("Shutting down (%s)", self._stop_signal_name or "stop requested")
        return summary

    def run_cycle(self, summary: LoopSummary) -> IterationReport | None:
        """One cycle: skip if the lock is held elsewhere, else run one iteration."""

        summary.cycles += 1
        self.last_report = None
        try:
            acquired = self.lock.acquire()
        except OSError:
            logger.exception("Could not acquire lock; skipping iteration #%d", summary.cycles)
            summary.skipped += 1
            return None
        if not acquired:
            holder = getattr(self.lock, "holder_pid", None)
            logger.warning(
                "Previous iteration (PID %s) still running, waiting...",
                holder() if callable(holder) else "unknown",
            )
            summary.skipped += 1
            return None

        report: IterationReport | None = None
        try:
            self._apply_retention()
            report = self.iteration.run(shutdown_requested=self.stop_requested)
        except Exception:
            logger.exception("Iteration #%d crashed", summary.cycles)
        finally:
            self.lock.release()

        self.last_report = report
        self._record(report, summary)
        return report

    def _apply_retention(self) -> None:
        paths = self.settings.paths
        retention = self.settings.retention
        self.retention.rotate(paths.log_dir, retention.max_log_bytes)
        self.retention.retain(paths.log_dir, retention.max_log_age_days)
        self.retention.retain(paths.archive_dir, retention.max_log_age_days)

    def _record(self, report: IterationReport | None, summary: LoopSummary) -> None:
        if report is not None and not report.is_failure:
            if report.outcome is IterationOutcome.NO_WORK_AVAILABLE:
                summary.no_work += 1
            else:
                summary.succeeded += 1
            logger.info("Iteration #%d completed: %s", summary.cycles, report.outcome.value)
            self.consecutive_failures = 0
            return

        summary.failed += 1
        if self._stop_requested:
            return
        self.consecutive_failures += 1
        logger.warning(
            "Iteration #%d failed (%s); consecutive failures: %d",
            summary.cycles,
            report.outcome.value if report is not None else "crashed",
            self.consecutive_failures,
        )
        if self.consecutive_failures >= self.settings.loop.max_consecutive_failures:
            logger.error(
                "Too many consecutive failures (%d), pausing for %s seconds...",
                self.consecutive_failures,
                self.settings.loop.cooldown_seconds,
            )
            self._sleep(self.settings.loop.cooldown_seconds)
            summary.cooldowns += 1
            self.consecutive_failures = 0

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Not in main thread; signal handlers not installed")
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def _request_stop(self, *, signal_name: str) -> None:
        if not self._stop_requested:
            logger.info("Received %s; finishing up and releasing the lock", signal_name)
        self._stop_requested = True
        self._stop_signal_name = signal_name
