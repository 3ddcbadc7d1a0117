# src/rollcall/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[str | None]) -> threading.Thread:
    """
    Blocking input() lives in a daemon thread so the event loop (timers,
    Matrix sync) keeps running and shutdown never waits for a pending prompt.
    """

    def reader() -> None:
        while True:
            try:
                line = input(">>> ")
            except (EOFError, KeyboardInterrupt):
                loop.call_soon_threadsafe(queue.put_nowait, None)
                return
            loop.call_soon_threadsafe(queue.put_nowait, line)

    t = threading.Thread(target=reader, name="rollcall-stdin", daemon=True)
    t.start()
    return t


async def run_console_loop(state: AppState, stop_event: asyncio.Event) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    queue: asyncio.Queue[str | None] = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), queue)

    while not stop_event.is_set():
        raw = await queue.get()
        if raw is None:
            logger.info("Console EOF received, exiting.")
            break

        line = raw.strip()
        if not line:
            continue
        if line.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            response = await command_registry.handle(state, line, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        _print_ts(response if response is not None else "Not a command. Use /help.")

    stop_event.set()
    logger.info("Console connector finished.")
