import json
from decimal import Decimal

import pytest

from core.exceptions import (
    BillingError, CollaboratorError, ConflictError, InvalidRequestError, NotFoundError,
)
from database.models import (
    ConfirmoPayment, ConfirmoPaymentStatus, CostPayment, InvoiceStatus,
)
from services.confirmo import (
    ConfirmoPaymentService, map_status, sign_payload, verify_signature,
)
from tests.conftest import auth_headers

SECRET = "test-webhook-secret"


@pytest.fixture
def gateway(db_session, confirmo, mailer):
    return ConfirmoPaymentService(db_session, confirmo, mailer=mailer)


@pytest.mark.parametrize("raw,expected", [
    ("active", ConfirmoPaymentStatus.PENDING),
    ("CONFIRMING", ConfirmoPaymentStatus.PROCESSING),
    ("paid", ConfirmoPaymentStatus.CONFIRMED),
    ("completed", ConfirmoPaymentStatus.COMPLETED),
    ("expired", ConfirmoPaymentStatus.EXPIRED),
    ("canceled", ConfirmoPaymentStatus.CANCELLED),
    ("something-new", ConfirmoPaymentStatus.PENDING),
    (None, ConfirmoPaymentStatus.PENDING),
])
def test_status_mapping(raw, expected):
    assert map_status(raw) == expected


def test_signature_verification():
    body = b'{"id":"cf_1","status":"paid"}'
    signature = sign_payload(body, SECRET)
    assert verify_signature(body, signature, SECRET)
    assert verify_signature(body, signature.upper(), SECRET)
    assert not verify_signature(body + b" ", signature, SECRET)
    assert not verify_signature(body, None, SECRET)


def test_payment_link_is_created_and_reused(gateway, make_invoice, confirmo):
    invoice = make_invoice(issue=True)

    first = gateway.create_payment_for_invoice(invoice.id)
    again = gateway.create_payment_for_invoice(invoice.id)

    assert first.id == again.id
    assert first.payment_url == "https://pay.example.com/cf_1"
    assert Decimal(first.amount) == Decimal("255.00")
    assert len(confirmo.created) == 1
    assert confirmo.created[0]["reference"] == invoice.invoice_number


def test_expired_link_is_replaced(db_session, gateway, make_invoice, confirmo):
    invoice = make_invoice(issue=True)
    first = gateway.create_payment_for_invoice(invoice.id)
    first.status = ConfirmoPaymentStatus.EXPIRED
    db_session.commit()

    second = gateway.create_payment_for_invoice(invoice.id)
    assert second.confirmo_invoice_id == "cf_2"
    assert db_session.query(ConfirmoPayment).count() == 1


def test_draft_invoice_has_no_payment_link(gateway, make_invoice):
    invoice = make_invoice()
    with pytest.raises(ConflictError):
        gateway.create_payment_for_invoice(invoice.id)


def test_disabled_gateway(db_session, make_invoice):
    invoice = make_invoice(issue=True)
    service = ConfirmoPaymentService(db_session, None)
    with pytest.raises(BillingError):
        service.create_payment_for_invoice(invoice.id)
    assert service.payment_url_for(invoice) is None


def test_confirmed_webhook_pays_invoice_once(db_session, gateway, make_invoice, mailer):
    invoice = make_invoice(issue=True)
    link = gateway.create_payment_for_invoice(invoice.id)
    payload = {"id": link.confirmo_invoice_id, "status": "paid", "tx_hash": "0xabc"}

    payment = gateway.handle_webhook(payload)
    db_session.refresh(invoice)
    assert payment.status == ConfirmoPaymentStatus.CONFIRMED
    assert payment.transaction_hash == "0xabc"
    assert payment.confirmed_at is not None
    assert invoice.status == InvoiceStatus.PAID

    ledger = db_session.query(CostPayment).filter(CostPayment.invoice_id == invoice.id).all()
    assert len(ledger) == 1
    assert Decimal(ledger[0].amount) == Decimal("255.00")

    # replay
    gateway.handle_webhook(dict(payload, status="completed"))
    assert db_session.query(CostPayment).filter(CostPayment.invoice_id == invoice.id).count() == 1
    assert mailer.kinds().count("payment_received") == 1


def test_pending_webhook_leaves_invoice_alone(db_session, gateway, make_invoice):
    invoice = make_invoice(issue=True)
    link = gateway.create_payment_for_invoice(invoice.id)
    gateway.handle_webhook({"id": link.confirmo_invoice_id, "status": "confirming"})
    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.ISSUED


def test_unknown_gateway_invoice(gateway):
    with pytest.raises(NotFoundError):
        gateway.handle_webhook({"id": "cf_missing", "status": "paid"})


def test_incomplete_gateway_reply_is_a_collaborator_error(db_session, make_invoice, confirmo):
    invoice = make_invoice(issue=True)
    confirmo.create_invoice = lambda payload: {"status": "active"}
    service = ConfirmoPaymentService(db_session, confirmo)

    with pytest.raises(CollaboratorError, match="missing"):
        service.create_payment_for_invoice(invoice.id)
    assert service.payment_url_for(invoice) is None
    assert db_session.query(ConfirmoPayment).count() == 0


def test_non_numeric_paid_amount_is_rejected(db_session, gateway, make_invoice):
    invoice = make_invoice(issue=True)
    link = gateway.create_payment_for_invoice(invoice.id)

    with pytest.raises(InvalidRequestError, match="paid_amount"):
        gateway.handle_webhook({"id": link.confirmo_invoice_id, "status": "paid", "paid_amount": "lots"})

    db_session.refresh(invoice)
    db_session.refresh(link)
    assert invoice.status == InvoiceStatus.ISSUED
    assert link.status == ConfirmoPaymentStatus.PENDING
    assert db_session.query(CostPayment).count() == 0


# ==================== API ====================

def _post_webhook(client, payload, signature=None):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["X-Confirmo-Signature"] = signature or sign_payload(body, SECRET)
    return client.post("/api/v1/webhooks/confirmo", content=body, headers=headers)


def test_webhook_requires_valid_signature(client, gateway, make_invoice):
    invoice = make_invoice(issue=True)
    link = gateway.create_payment_for_invoice(invoice.id)
    payload = {"id": link.confirmo_invoice_id, "status": "paid"}

    assert _post_webhook(client, payload, signature="bad").status_code == 401
    assert _post_webhook(client, payload, signature=False).status_code == 401

    response = _post_webhook(client, payload)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CONFIRMED"


def test_customer_opens_crypto_payment(client, make_invoice, customer, other_customer):
    invoice = make_invoice(issue=True)

    response = client.post(f"/api/v1/invoices/{invoice.id}/crypto-payment", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json()["data"]["payment_url"].startswith("https://pay.example.com/")

    response = client.post(f"/api/v1/invoices/{invoice.id}/crypto-payment", headers=auth_headers(other_customer))
    assert response.status_code == 403


def test_webhook_with_bad_amount_returns_400(client, gateway, make_invoice):
    invoice = make_invoice(issue=True)
    link = gateway.create_payment_for_invoice(invoice.id)

    response = _post_webhook(client, {"id": link.confirmo_invoice_id, "status": "paid", "paid_amount": "NaN"})
    assert response.status_code == 400
    assert "paid_amount" in response.json()["detail"]
