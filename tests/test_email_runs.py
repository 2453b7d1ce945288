import pytest

from core.exceptions import InvalidRequestError, NotFoundError
from database.models import (
    EmailRunStatus, InvoiceNotification, InvoiceStatus, NotificationStatus,
    AuditLog, AuditAction,
)
from services.email_runs import EmailRunService
from tests.conftest import auth_headers


@pytest.fixture
def runs(db_session, mailer):
    return EmailRunService(db_session, mailer=mailer)


def test_bulk_send_reports_each_invoice(db_session, runs, make_invoice, mailer, admin):
    first = make_invoice(issue=True)
    second = make_invoice(issue=True)
    draft = make_invoice()
    cancelled = make_invoice()
    cancelled.status = InvoiceStatus.CANCELLED
    db_session.commit()
    mailer.sent.clear()

    run = runs.bulk_send([first.id, second.id, draft.id, cancelled.id], actor_id=admin.id)

    assert run.status == EmailRunStatus.COMPLETED
    assert run.completed_at is not None
    # cancelled invoices are left out of the run entirely
    assert run.total_invoices == 3
    assert run.success_count == 2
    assert run.failure_count == 1
    assert sorted(m["invoice_id"] for m in mailer.sent) == sorted([first.id, second.id])

    by_invoice = {r.invoice_id: r for r in run.results}
    assert by_invoice[first.id].success
    assert by_invoice[first.id].customer_email == "alice@example.com"
    assert by_invoice[first.id].sent_at is not None
    assert not by_invoice[draft.id].success
    assert "DRAFT" in by_invoice[draft.id].error_message


def test_bulk_send_goes_through_notification_bookkeeping(db_session, runs, make_invoice, mailer):
    invoice = make_invoice(issue=True)
    before = db_session.query(InvoiceNotification).filter(InvoiceNotification.invoice_id == invoice.id).count()

    runs.bulk_send([invoice.id])

    rows = db_session.query(InvoiceNotification).filter(InvoiceNotification.invoice_id == invoice.id).all()
    assert len(rows) == before + 1
    assert rows[-1].status == NotificationStatus.SENT
    sent_entries = db_session.query(AuditLog).filter(
        AuditLog.entity_id == invoice.id, AuditLog.action == AuditAction.INVOICE_SENT_TO_CUSTOMER,
    ).count()
    assert sent_entries == 2


def test_bulk_send_with_nothing_to_send(runs):
    with pytest.raises(InvalidRequestError):
        runs.bulk_send([])
    with pytest.raises(NotFoundError, match="No invoices"):
        runs.bulk_send([9999])


def test_failed_results_can_be_resent(db_session, runs, make_invoice, mailer):
    invoice = make_invoice(issue=True)
    mailer.fail = True
    run = runs.bulk_send([invoice.id])
    assert run.failure_count == 1
    result = run.results[0]
    assert "failed" in result.error_message.lower()

    mailer.fail = False
    outcome = runs.resend(run.id, [result.id])

    assert outcome["resent"] == [invoice.id]
    assert outcome["summary"] == {"total": 1, "successful": 1, "failed": 0}
    db_session.refresh(run)
    db_session.refresh(result)
    assert result.success
    assert result.error_message is None
    assert (run.success_count, run.failure_count) == (1, 0)


def test_resend_only_touches_its_own_run(runs, make_invoice):
    first_run = runs.bulk_send([make_invoice(issue=True).id])
    second_run = runs.bulk_send([make_invoice(issue=True).id])

    with pytest.raises(NotFoundError, match="No results"):
        runs.resend(first_run.id, [second_run.results[0].id])
    with pytest.raises(NotFoundError, match="Email run not found"):
        runs.resend(9999, [1])


def test_run_results_filter(runs, make_invoice):
    run = runs.bulk_send([make_invoice(issue=True).id, make_invoice().id])

    _, failed, total = runs.run_results(run.id, "failed")
    assert total == 1
    assert not failed[0].success
    _, everything, total = runs.run_results(run.id)
    assert total == 2
    with pytest.raises(InvalidRequestError):
        runs.run_results(run.id, "maybe")


# ==================== API ====================

def test_bulk_email_api_flow(client, admin, customer, make_invoice, mailer):
    headers = auth_headers(admin)
    issued = make_invoice(issue=True)
    draft = make_invoice()

    response = client.post("/api/v1/invoices/bulk-send-email", headers=headers, json={
        "invoice_ids": [issued.id, draft.id, issued.id],
    })
    assert response.status_code == 200
    body = response.json()
    run_id = body["run_id"]
    assert body["data"]["total_invoices"] == 2
    assert body["data"]["success_count"] == 1
    assert body["data"]["created_by"]["email"] == "admin@example.com"

    listed = client.get("/api/v1/email-runs", headers=headers).json()
    assert listed["count"] == 1

    detail = client.get(f"/api/v1/email-runs/{run_id}", headers=headers, params={"status": "failed"}).json()
    results = detail["data"]["results"]
    assert detail["data"]["pagination"]["total"] == 1
    assert results[0]["invoice_number"] == draft.invoice_number

    resent = client.post(f"/api/v1/email-runs/{run_id}/resend", headers=headers, json={
        "result_ids": [results[0]["id"]],
    })
    assert resent.status_code == 200
    assert resent.json()["summary"]["failed"] == 1


def test_bulk_email_requires_admin_and_ids(client, admin, customer):
    assert client.post("/api/v1/invoices/bulk-send-email", headers=auth_headers(customer), json={
        "invoice_ids": [1],
    }).status_code == 403
    assert client.post("/api/v1/invoices/bulk-send-email", headers=auth_headers(admin), json={
        "invoice_ids": [],
    }).status_code == 400
    assert client.get("/api/v1/email-runs/9999", headers=auth_headers(admin)).status_code == 404
    assert client.get("/api/v1/email-runs", headers=auth_headers(customer)).status_code == 403
