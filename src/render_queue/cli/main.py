# src/render_queue/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the engine (scheduler + executor)
in a background thread and runs the console REPL in the main thread.
"""

from __future__ import annotations

import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.engine import start_engine_in_background
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 30.0


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)

    runner = start_engine_in_background(state)
    if runner is None:
        logger.error("Engine failed to start; exiting.")
        raise SystemExit(1)
    state.runner = runner

    try:
        run_console_loop(state)
    finally:
        runner.stop()
        # In-flight generations are awaited by the scheduler before the loop exits.
        runner.join(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        if runner.thread.is_alive():
            logger.warning("Engine did not stop within %.0fs; abandoning in-flight tasks.", SHUTDOWN_TIMEOUT_SECONDS)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
