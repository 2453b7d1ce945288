"""
Overdue Sweep Scheduler

Runs inside the API process when OVERDUE_SWEEP_ENABLED is set.
Every interval it materializes overdue invoices and retries failed emails.
"""
import asyncio
import logging

logger = logging.getLogger(__name__)


class OverdueScheduler:
    """Periodic overdue sweep plus email retry pass."""

    def __init__(self, interval_seconds: int = 3600, mailer_factory=None):
        self.running = True
        self.interval_seconds = interval_seconds
        self.mailer_factory = mailer_factory

    async def run(self):
        """Main scheduler loop."""
        logger.info(f"📅 Overdue sweep scheduler started (every {self.interval_seconds}s)")

        while self.running:
            try:
                await asyncio.to_thread(self.tick)
            except Exception as e:
                logger.error(f"Scheduler error: {e}")

            await asyncio.sleep(self.interval_seconds)

    def stop(self):
        self.running = False

    def tick(self) -> dict:
        """One sweep + retry pass in its own session."""
        from database.connection import db
        from services.invoice import InvoiceService

        session = db.get_session_direct()
        try:
            mailer = self.mailer_factory() if self.mailer_factory else None
            service = InvoiceService(session, mailer=mailer)
            marked = service.sweep_overdue()
            retried = service.notifier.retry_failed()
            if marked or retried["attempted"]:
                logger.info(f"⏰ Sweep: {marked} overdue, {retried['sent']}/{retried['attempted']} emails retried")
            return {"overdue": marked, "retries": retried}
        finally:
            session.close()
