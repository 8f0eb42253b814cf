"""Graceful shutdown handling for the deploy step."""

import asyncio
import signal
from typing import Awaitable, Callable, List, Optional

import structlog

logger = structlog.get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdownHandler:
    """Cancels the running deploy task on SIGINT/SIGTERM and runs cleanup callbacks.

    Cancelling the task lets the kubectl executor kill its subprocess and
    delete the ephemeral kubeconfig on the way out.
    """

    def __init__(self, callback_timeout: float = 10.0):
        """Initialize shutdown handler."""
        self._shutdown_callbacks: List[Callable[[], Awaitable[None]]] = []
        self._is_shutting_down = False
        self._shutdown_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._installed: List[signal.Signals] = []
        self.callback_timeout = callback_timeout
        self.received_signal: Optional[signal.Signals] = None

    def add_shutdown_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Add a callback to be executed during shutdown."""
        self._shutdown_callbacks.append(callback)

    def install(self, task: asyncio.Task) -> None:
        """Route SIGINT/SIGTERM on the running loop to cancelling ``task``."""
        self._task = task
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                logger.debug("Signal handler not installed", signal=sig.name)

    def uninstall(self) -> None:
        """Remove the installed signal handlers."""
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def _on_signal(self, sig: signal.Signals) -> None:
        if self.received_signal is not None:
            logger.warning("Shutdown already in progress", signal=sig.name)
            return
        self.received_signal = sig
        logger.warning("Received shutdown signal, cancelling deploy", signal=sig.name)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def shutdown(self) -> None:
        """Perform graceful shutdown."""
        async with self._shutdown_lock:
            if self._is_shutting_down:
                return

            self._is_shutting_down = True
            logger.info("Starting graceful shutdown")

            # Execute shutdown callbacks in reverse order with timeout
            for callback in reversed(self._shutdown_callbacks):
                callback_name = getattr(callback, "__name__", str(callback))
                try:
                    await asyncio.wait_for(callback(), timeout=self.callback_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Shutdown callback timed out", callback=callback_name, timeout=self.callback_timeout
                    )
                except Exception as e:
                    logger.error("Error in shutdown callback", callback=callback_name, error=str(e))

            logger.info("Graceful shutdown completed")
