from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

import database.connection
from database.base import get_utc_now
from database.models import InvoiceStatus
from services.overdue_scheduler import OverdueScheduler


class _SessionSource:
    def __init__(self, engine):
        self.factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def get_session_direct(self):
        return self.factory()


@pytest.fixture
def scheduler_db(monkeypatch, engine):
    monkeypatch.setattr(database.connection, "db", _SessionSource(engine))


def test_tick_marks_overdue_and_retries(db_session, scheduler_db, make_invoice, mailer):
    invoice = make_invoice(issue=True, invoice_generated_date=get_utc_now() - timedelta(days=40))
    result = OverdueScheduler(mailer_factory=lambda: mailer).tick()

    assert result["overdue"] == 1
    assert result["retries"]["attempted"] == 0
    db_session.expire_all()
    assert invoice.status == InvoiceStatus.OVERDUE


def test_tick_without_work(scheduler_db, db_session):
    result = OverdueScheduler().tick()
    assert result == {"overdue": 0, "retries": {"attempted": 0, "sent": 0, "failed": 0}}


def test_stop():
    scheduler = OverdueScheduler(interval_seconds=1)
    scheduler.stop()
    assert scheduler.running is False
