"""
Background worker that delivers due follow-up messages.

Usage:
    python -m app.worker

The worker polls for due executions and sends them. Several workers may run
against the same database; claims keep each execution to a single sender.
For production, run this as a separate process (e.g., systemd service, Docker container).
"""

import asyncio
import logging
import signal

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.session import SessionLocal
from app.services.follow_up_dispatcher import DispatchReport, build_dispatcher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_once() -> DispatchReport:
    """Run a single dispatcher cycle in a fresh session."""
    with SessionLocal() as db:
        return await build_dispatcher(db).run_cycle()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows and non-main threads
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def worker_loop(stop_event: asyncio.Event | None = None) -> None:
    """
    Main worker loop - polls for and delivers due follow-ups.

    A stop request lets the in-flight batch finish before returning.
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s, dry run: %s)",
        settings.FOLLOW_UP_POLL_INTERVAL,
        settings.FOLLOW_UP_BATCH_SIZE,
        settings.MESSAGING_DRY_RUN,
    )

    while not stop_event.is_set():
        try:
            report = await run_once()
            if report.claimed or report.reclaimed:
                logger.info(
                    "Cycle done: claimed=%s sent=%s failed=%s reclaimed=%s",
                    report.claimed,
                    report.sent,
                    report.failed,
                    report.reclaimed,
                )
        except Exception:
            logger.exception(
                "Error in worker loop",
                extra=build_log_context(route="worker", method="background"),
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.FOLLOW_UP_POLL_INTERVAL)
        except asyncio.TimeoutError:
            pass

    logger.info("Worker stopped")


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()
