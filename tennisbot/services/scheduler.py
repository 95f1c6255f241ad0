"""Periodic maintenance tasks run inside the application's event loop."""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from tennisbot.db.backup import BackupInfo, BackupManager
from tennisbot.db.repository import BookingStore
from tennisbot.db.session import Database

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """
    Runs the completion sweep, automatic backups and database health checks.

    Each task logs and swallows its own failures so one broken task never
    stops the others or the application.
    """

    def __init__(self, settings, store: BookingStore, backups: BackupManager, database: Database):
        self.settings = settings
        self.store = store
        self.backups = backups
        self.database = database
        self._tasks: List[asyncio.Task] = []

    async def run_completion_sweep(self, now: Optional[datetime] = None) -> List[int]:
        try:
            completed = self.store.mark_past_bookings_completed(now or self.store.local_now())
        except Exception as e:
            logger.error(f"Completion sweep failed: {e}", exc_info=True)
            return []
        if completed:
            logger.info(f"Marked {len(completed)} past booking(s) as completed")
        return completed

    async def run_backup(self) -> Optional[BackupInfo]:
        try:
            info = await asyncio.to_thread(self.backups.create_backup)
            self.backups.cleanup_old_backups()
            return info
        except Exception as e:
            logger.error(f"Scheduled backup failed: {e}", exc_info=True)
            return None

    async def run_health_check(self) -> dict:
        result = self.database.health_check()
        if result["status"] == "healthy":
            logger.info(f"Database health check passed: {result['details']}")
        else:
            logger.error(f"Database health check failed: {result['details']}")
        return result

    async def _every(self, seconds: float, job: Callable[[], Awaitable]) -> None:
        while True:
            await job()
            await asyncio.sleep(seconds)

    def start(self) -> None:
        """Create the periodic tasks on the running event loop."""
        if self._tasks:
            return
        self._tasks.append(asyncio.create_task(
            self._every(self.settings.completion_sweep_minutes * 60, self.run_completion_sweep)
        ))
        self._tasks.append(asyncio.create_task(
            self._every(self.settings.db_health_check_interval_hours * 3600, self.run_health_check)
        ))
        if self.settings.db_auto_backup:
            self._tasks.append(asyncio.create_task(
                self._every(self.settings.db_backup_interval_hours * 3600, self.run_backup)
            ))
        logger.info(f"Scheduler started with {len(self._tasks)} task(s)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")
