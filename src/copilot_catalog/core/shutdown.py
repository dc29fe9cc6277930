"""
GracefulShutdown - SIGINT/SIGTERM handling for a clean exit.

Quota waits can last minutes (until the remote resets its rate limit),
so every wait in the catalog goes through `GracefulShutdown.sleep`,
which returns early when a shutdown is requested:

- First SIGINT (Ctrl+C): sets the flag; any pending wait is interrupted
  with ShutdownRequested and the in-flight refresh is abandoned without
  touching the cache.
- Second SIGINT: immediate exit with code 130.
- SIGTERM: same as the first SIGINT (CI/Docker environments).
"""

import signal
import sys
import threading

import structlog

logger = structlog.get_logger()

EXIT_INTERRUPTED = 130  # POSIX convention: 128 + SIGINT(2)


class ShutdownRequested(Exception):
    """Raised when a wait is interrupted by a shutdown request."""

    def __init__(self, remaining: float = 0.0):
        self.remaining = remaining
        super().__init__("Shutdown requested during wait")


class GracefulShutdown:
    """Shutdown flag plus interruptible sleeping.

    Attributes:
        should_stop: True once an interruption signal has been received.

    Usage:
        shutdown = GracefulShutdown(install_signals=True)
        client = RemoteClient(config, gate, sleep=shutdown.sleep)
    """

    def __init__(self, install_signals: bool = False) -> None:
        """Create the shutdown flag.

        Args:
            install_signals: If True, installs SIGINT/SIGTERM handlers.
                Only possible from the main thread.
        """
        self._event = threading.Event()
        self._previous: dict[int, object] = {}

        if install_signals:
            for signum in (signal.SIGINT, signal.SIGTERM):
                self._previous[signum] = signal.getsignal(signum)
                signal.signal(signum, self._handler)
            logger.debug("graceful_shutdown.installed")

    def _handler(self, signum: int, frame) -> None:
        """Shared handler for SIGINT and SIGTERM."""
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"

        if self._event.is_set():
            logger.warning("graceful_shutdown.forced", signal=signal_name)
            sys.exit(EXIT_INTERRUPTED)

        logger.warning(
            "graceful_shutdown.requested",
            signal=signal_name,
            message="Abandoning the current refresh. Ctrl+C again to exit now.",
        )
        self.request()

    def request(self) -> None:
        """Request shutdown; wakes every pending sleep."""
        self._event.set()

    def sleep(self, seconds: float) -> None:
        """Sleep for `seconds` unless a shutdown is requested first.

        Raises:
            ShutdownRequested: If shutdown was requested before or during the wait.
        """
        if self._event.is_set():
            raise ShutdownRequested(remaining=max(0.0, seconds))
        if seconds <= 0:
            return
        if self._event.wait(timeout=seconds):
            raise ShutdownRequested()

    @property
    def should_stop(self) -> bool:
        """True if an interruption has been requested."""
        return self._event.is_set()

    def reset(self) -> None:
        """Clear the flag (useful for testing)."""
        self._event.clear()

    def restore_signals(self) -> None:
        """Put back the signal handlers that were active before install."""
        if not self._previous:
            return
        for signum, previous in self._previous.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous = {}
        logger.debug("graceful_shutdown.restored_signals")
