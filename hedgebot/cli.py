"""CLI tool for running the bot and operator actions.

Usage:
    python -m hedgebot.cli run
    python -m hedgebot.cli serve [host] [port]
    python -m hedgebot.cli show-state
    python -m hedgebot.cli reset-state
"""

import asyncio
import json
import signal
import sys

from hedgebot.config import settings
from hedgebot.database import create_db_and_tables
from hedgebot.utils.logging import setup_logging


async def _run_headless() -> int:
    from hedgebot.engine.errors import HedgeBotError
    from hedgebot.engine.position_sync import sync_positions_on_startup
    from hedgebot.engine.runtime import init_runtime
    from hedgebot.engine.scheduler import stop_scheduler

    runtime = init_runtime(settings)
    await sync_positions_on_startup(runtime.state, runtime.client, notify=runtime.notify)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            pass

    try:
        await runtime.start()
    except HedgeBotError as e:
        print(f"Bot not started: {e}")
        await runtime.shutdown()
        return 1
    waiter = asyncio.create_task(runtime.wait())
    stopper = asyncio.create_task(stop_requested.wait())
    await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
    stopper.cancel()

    # Keeps the persisted running flag so a restart with auto_start resumes
    await runtime.shutdown()
    stop_scheduler()

    if runtime.fatal_error:
        print(f"Bot halted: {runtime.fatal_error}")
        return 1
    return 0


def run():
    """Run the monitor loop headless until interrupted."""
    setup_logging()
    create_db_and_tables()
    sys.exit(asyncio.run(_run_headless()))


def serve(host: str = "0.0.0.0", port: int = 8000):
    """Serve the control API (the bot runs inside the server process)."""
    import uvicorn
    uvicorn.run("hedgebot.main:app", host=host, port=port, log_level=settings.log_level.lower())


def show_state():
    """Print the persisted snapshot as JSON."""
    from hedgebot.engine.state_store import StateStore

    create_db_and_tables()
    state = StateStore().load()
    payload = {**state.to_dict(), "phase": state.phase.value, "realized_pnl": state.realized_pnl}
    print(json.dumps(payload, indent=2))


def reset_state():
    """Wipe the persisted snapshot after confirmation."""
    from hedgebot.engine.state_store import StateStore

    create_db_and_tables()
    store = StateStore()
    state = store.load()
    if state.main_trade or state.hedge_trade:
        print(f"Warning: state still tracks open trades (phase {state.phase.value}).")
        print("Close them on the exchange yourself; reset does not place orders.")
    answer = input("Reset persisted state to defaults? [y/N]: ").strip().lower()
    if answer != "y":
        print("Aborted.")
        sys.exit(1)
    store.reset()
    print("State reset.")


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m hedgebot.cli <command>")
        print("Commands: run, serve, show-state, reset-state")
        sys.exit(1)

    command = sys.argv[1]
    if command == "run":
        run()
    elif command == "serve":
        host = sys.argv[2] if len(sys.argv) > 2 else "0.0.0.0"
        port = int(sys.argv[3]) if len(sys.argv) > 3 else 8000
        serve(host, port)
    elif command == "show-state":
        show_state()
    elif command == "reset-state":
        reset_state()
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
