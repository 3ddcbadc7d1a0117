# src/rollcall/registration/recovery.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.clock import Clock
from ..core.errors import ErrorReporter, ErrorType, InitializationError, PersistenceError
from ..core.ports import Gateway
from .manager import RegistrationManager
from .window_store import WindowStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecoveryReport:
    finalized: list[str] = field(default_factory=list)
    rearmed: list[str] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.finalized) + len(self.rearmed) + len(self.discarded) + len(self.deferred)


class RecoveryManager:
    """
    Boot-time reconciliation of persisted windows.

    Must run after Scheduler.load() and before the gateway starts delivering
    reactions. For each open/closed window:
    - backing message gone      -> discard (logged loudly, no retry)
    - end_timestamp has passed  -> close now
    - otherwise                 -> re-arm the close task
    A gateway failure while checking a window defers it to the normal
    close/retry path instead of failing boot.
    """

    def __init__(
        self,
        *,
        windows: WindowStore,
        registrations: RegistrationManager,
        gateway: Gateway,
        clock: Clock,
        reporter: ErrorReporter,
    ) -> None:
        self._windows = windows
        self._registrations = registrations
        self._gateway = gateway
        self._clock = clock
        self._reporter = reporter

    async def run(self) -> RecoveryReport:
        report = RecoveryReport()
        try:
            windows = self._windows.list_open_or_closed()
        except PersistenceError as e:
            raise InitializationError(f"Failed to list registration windows: {e}") from e

        logger.info("Recovery: %d unprocessed window(s)", len(windows))

        for window in windows:
            try:
                message = await self._gateway.fetch_message(window.channel_id, window.id)
            except Exception as e:
                self._reporter.report(
                    ErrorType.MESSAGE_SENDING,
                    f"Recovery could not fetch message for {window.identifier}; close re-armed",
                    error=e,
                )
                self._registrations.arm_close(window)
                report.deferred.append(window.identifier)
                continue

            if message is None:
                logger.warning(
                    "Recovery: message for %s (channel=%s) is gone; window cannot be completed",
                    window.identifier,
                    window.channel_id,
                )
                self._registrations.discard_window(window)
                report.discarded.append(window.identifier)
                continue

            if self._clock.now_ms() >= window.end_timestamp:
                logger.info("Recovery: %s is overdue; closing now", window.identifier)
                summary = await self._registrations.close_window(window.identifier)
                if summary is not None:
                    report.finalized.append(window.identifier)
                else:
                    report.deferred.append(window.identifier)
                continue

            self._registrations.arm_close(window)
            report.rearmed.append(window.identifier)

        logger.info(
            "Recovery done finalized=%d rearmed=%d discarded=%d deferred=%d",
            len(report.finalized),
            len(report.rearmed),
            len(report.discarded),
            len(report.deferred),
        )
        return report
