"""
Scheduled background tasks.

Runs the overdue sweep and the membership expiry at a fixed interval on a
Flask-SocketIO background task, so that notifications raised by the sweep
are emitted from the same server loop.
"""
import logging
import threading

from library_engine.errors import LibraryError
from library_engine.extensions import socketio

logger = logging.getLogger(__name__)

_stop_event = threading.Event()
_task = None


def run_maintenance_cycle(engine) -> None:
    """Run one overdue sweep and one membership expiry pass."""
    try:
        swept = engine.sweep_overdue()
        expired = engine.expire_memberships()
        logger.info("Scheduled cycle: %d loan(s) overdue, %d membership(s) expired",
                    len(swept), len(expired))
    except LibraryError as exc:
        # Retried on the next cycle
        logger.warning("Scheduled cycle failed: %s", exc.message)
    finally:
        engine.close()


def _loop(app, interval: int) -> None:
    engine = app.extensions['library_engine']
    while not _stop_event.is_set():
        try:
            with app.app_context():
                run_maintenance_cycle(engine)
        except Exception:
            # The loop must outlive a failed cycle
            logger.exception("Scheduled cycle crashed; retrying in %d seconds", interval)
        socketio.sleep(interval)


def start_scheduler(app) -> None:
    """Start the periodic tasks unless disabled or already running."""
    global _task
    if not app.config.get('SCHEDULER_ENABLED', True):
        logger.info("Scheduler disabled")
        return
    if _task is not None:
        return

    interval = int(app.config.get('OVERDUE_SWEEP_INTERVAL_SECONDS', 3600))
    _stop_event.clear()
    _task = socketio.start_background_task(_loop, app, interval)
    logger.info("Scheduler started (every %d seconds)", interval)


def shutdown_scheduler() -> None:
    """Stop the periodic tasks after the current cycle."""
    global _task
    if _task is None:
        return
    _stop_event.set()
    _task = None
    logger.info("Scheduler stopped")
