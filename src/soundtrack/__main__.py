"""Run the history sync scheduler until interrupted.

Usage:
    alembic upgrade head   # once, creates/updates the schema
    python -m soundtrack

Configuration comes from environment variables / .env (see soundtrack.config).
"""

import asyncio
import contextlib
import logging
import signal

from soundtrack.infrastructure.lifecycle import lifespan

logger = logging.getLogger("soundtrack")


async def main() -> None:
    """Start all workers and block until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Windows event loops don't support signal handlers - Ctrl+C still raises there
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    async with lifespan():
        logger.info("app.running")
        await stop_event.wait()


def run() -> None:
    """Console script entry point."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
