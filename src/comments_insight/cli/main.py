# src/comments_insight/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, recovers task state from the last run,
then runs the console REPL until /exit, EOF or a signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.manager.aclose()
    except Exception:
        logger.exception("Failed to shut down the task manager.")

    close = getattr(state.analyzer, "aclose", None)
    if callable(close):
        try:
            await close()
        except Exception:
            logger.debug("AI client close failed.", exc_info=True)


async def _run(state: AppState) -> None:
    await state.manager.initialize()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not supported on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    console = asyncio.create_task(run_console_loop(state, stop), name="console")
    stopper = asyncio.create_task(stop.wait(), name="stop-signal")
    try:
        await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not console.done():
            # The stdin reader is a daemon thread; it dies with the process.
            console.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await console
        await _shutdown(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/insight")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "comments-insight"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
