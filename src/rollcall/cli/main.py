# src/rollcall/cli/main.py

"""
CLI entrypoint.

Initializes logging, picks a gateway (Matrix or console), builds AppState,
boots (recovery first), then runs until a signal, /exit or EOF.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from ..cli.bootstrap import boot, create_app_state, shutdown
from ..config import Settings, get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.console_gateway import ConsoleGateway
from ..core.errors import InitializationError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(settings: Settings) -> int:
    matrix_gateway = None
    if settings.matrix_enabled:
        from ..connectors.matrix_client import create_matrix_client, join_configured_rooms
        from ..connectors.matrix_gateway import MatrixGateway

        client = await create_matrix_client(settings)
        if client is None:
            logger.error("Matrix client creation failed; aborting.")
            return 1
        await join_configured_rooms(client, settings)
        matrix_gateway = MatrixGateway(client)
        gateway = matrix_gateway
    else:
        gateway = ConsoleGateway(roster=settings.console_roster)

    state = create_app_state(settings, gateway)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await boot(state)
    except InitializationError:
        logger.exception("Boot failed.")
        await shutdown(state)
        if matrix_gateway is not None:
            await matrix_gateway.close()
        return 1

    runners: list[asyncio.Task] = []
    if matrix_gateway is not None:
        runners.append(asyncio.create_task(matrix_gateway.run(stop_event), name="rollcall-matrix"))
    if settings.console_enabled and sys.stdin.isatty():
        runners.append(asyncio.create_task(run_console_loop(state, stop_event), name="rollcall-console"))
    else:
        logger.info("Console disabled. Press Ctrl+C to stop.")

    stopper = asyncio.create_task(stop_event.wait())
    try:
        await asyncio.wait([stopper, *runners], return_when=asyncio.FIRST_COMPLETED)
        for r in runners:
            if r.done() and not r.cancelled() and r.exception() is not None:
                logger.error("Connector crashed.", exc_info=r.exception())
    finally:
        stop_event.set()
        for r in (stopper, *runners):
            r.cancel()
        await asyncio.gather(stopper, *runners, return_exceptions=True)
        await shutdown(state)
        if matrix_gateway is not None:
            await matrix_gateway.close()

    return 0


def main() -> None:
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (tz=%s, log=%s)...", settings.app_name, settings.timezone, log_file)
    try:
        code = asyncio.run(_run(settings))
    except KeyboardInterrupt:
        code = 0
    logger.info("Bye.")
    sys.exit(code)


if __name__ == "__main__":
    main()
