# src/s3_sync/signals.py
"""
Signal handling for an interruptible sync run.

SIGINT and SIGTERM set an `asyncio.Event` that the worker pools check between
files. The run stops taking new work, lets in-flight requests finish, and
reports a partial summary. The handler names the phase that was cut short so
the operator knows whether any upload or deletion had started.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple

logger: logging.Logger = logging.getLogger(__name__)

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

# Conventional exit status of a process stopped by a signal: 128 + signum
FORCED_EXIT_CODE: int = 128 + signal.SIGINT


class GracefulShutdown:
    """
    An async context manager turning shutdown signals into an `asyncio.Event`.

    The first signal sets the event; a second one exits the process at once.
    Previous handlers are restored on exit.

    Attributes:
        received (signal.Signals, optional): The first signal caught, if any.
    """

    def __init__(self, describe_phase: Optional[Callable[[], str]] = None) -> None:
        """
        Args:
            describe_phase (Callable[[], str], optional): Returns what the run
                is currently doing. It can also be set later with `watch`.
        """
        self._event: asyncio.Event = asyncio.Event()
        self._previous: Dict[signal.Signals, Any] = {}
        self._describe_phase: Optional[Callable[[], str]] = describe_phase
        self.received: Optional[signal.Signals] = None

    def watch(self, describe_phase: Callable[[], str]) -> None:
        """Report the phase returned by `describe_phase` when interrupted."""
        self._describe_phase = describe_phase

    def _phase(self) -> str:
        if self._describe_phase is None:
            return "running"
        return self._describe_phase()

    async def __aenter__(self) -> asyncio.Event:
        """
        Install the handlers.

        Returns:
            asyncio.Event: Set once a handled signal arrives.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()

        def _handler(signum: int, _: Optional[FrameType]) -> None:
            sig: signal.Signals = signal.Signals(signum)
            if self.received is not None:
                logger.critical(
                    f"Received {sig.name} again while {self._phase()}. Exiting now."
                )
                os._exit(FORCED_EXIT_CODE)
            self.received = sig
            logger.warning(
                f"Received {sig.name} while {self._phase()}. No new files will be "
                "started; press Ctrl+C again to abort."
            )
            loop.call_soon_threadsafe(self._event.set)

        for sig in HANDLED_SIGNALS:
            try:
                # Only allowed from the main thread
                self._previous[sig] = signal.signal(sig, _handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not set handler for {sig.name}: {e}")

        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restore the previous handlers."""
        if self.received is not None:
            logger.info(f"Stopped after {self.received.name} while {self._phase()}.")
        for sig, handler in self._previous.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._previous.clear()
