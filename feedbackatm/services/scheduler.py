"""
Daily task generation scheduler.

A daemon thread runs the global generation once at start and then at every
00:00 in the task timezone. A failed cycle is logged and the loop waits for
the next one; the per-request generation path covers the gap.
"""
import threading
from typing import Callable, Optional

import structlog

from ..db import SessionLocal
from .task_generator import generate_daily_tasks
from .time_rules import seconds_until_next_midnight


logger = structlog.get_logger(__name__)


def run_generation_once(session_factory: Callable = SessionLocal) -> Optional[int]:
    db = session_factory()
    try:
        return generate_daily_tasks(db)
    except Exception as e:
        db.rollback()
        logger.error("daily_task_generation_failed", error=str(e), exc_info=True)
        return None
    finally:
        db.close()


class DailyTaskScheduler:
    def __init__(self, session_factory: Callable = SessionLocal):
        self.session_factory = session_factory
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _loop(self) -> None:
        run_generation_once(self.session_factory)
        while not self._stop.is_set():
            delay = seconds_until_next_midnight()
            logger.info("daily_task_generation_scheduled", in_seconds=int(delay))
            if self._stop.wait(delay):
                break
            run_generation_once(self.session_factory)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-task-generation", daemon=True)
        self._thread.start()
        logger.info("scheduler_started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("scheduler_stopped")
