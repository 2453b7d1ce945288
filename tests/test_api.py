"""End-to-end flows through the HTTP API."""

from datetime import timedelta
from decimal import Decimal

from core.security import get_password_hash, create_refresh_token, TokenData
from database.base import get_utc_now
from database.models import RoleType
from tests.conftest import auth_headers


# ==================== AUTH ====================

def test_login_and_me(client, make_user):
    user = make_user("carol@example.com", password_hash=get_password_hash("s3cret-pass"))

    response = client.post("/api/v1/auth/login", json={"email": "Carol@Example.com", "password": "s3cret-pass"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == user.id
    token = body["tokens"]["access_token"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "carol@example.com"


def test_login_with_wrong_password(client, make_user):
    make_user("dave@example.com", password_hash=get_password_hash("right-password"))
    response = client.post("/api/v1/auth/login", json={"email": "dave@example.com", "password": "wrong-password"})
    assert response.status_code == 401


def test_refresh_token(client, customer):
    refresh = create_refresh_token(TokenData(customer.id, customer.email, customer.role.value).to_dict())
    response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
    assert response.status_code == 200
    assert response.json()["access_token"]

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
    assert response.status_code == 401


def test_bad_token(client):
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


# ==================== CUSTOMERS ====================

def test_admin_manages_customers(client, admin):
    payload = {"email": "erin@example.com", "password": "long-enough", "name": "Erin"}
    response = client.post("/api/v1/customers", json=payload, headers=auth_headers(admin))
    assert response.status_code == 201
    customer_id = response.json()["data"]["id"]

    duplicate = client.post("/api/v1/customers", json=payload, headers=auth_headers(admin))
    assert duplicate.status_code == 409

    response = client.patch(
        f"/api/v1/customers/{customer_id}", json={"luxor_subaccount_name": "erin_sub"},
        headers=auth_headers(admin),
    )
    assert response.json()["data"]["luxor_subaccount_name"] == "erin_sub"


def test_client_cannot_list_customers(client, customer):
    response = client.get("/api/v1/customers", headers=auth_headers(customer))
    assert response.status_code == 403


def test_only_super_admin_deletes_customers(client, admin, super_admin, customer):
    response = client.delete(f"/api/v1/customers/{customer.id}", headers=auth_headers(admin))
    assert response.status_code == 403

    response = client.delete(f"/api/v1/customers/{customer.id}", headers=auth_headers(super_admin))
    assert response.status_code == 200


def test_validation_errors_are_400(client, admin):
    response = client.post("/api/v1/customers", json={"email": "x@example.com", "password": "short"},
                           headers=auth_headers(admin))
    assert response.status_code == 400


def test_customer_miner_count(client, admin, customer, add_miners):
    add_miners(customer, active=3, inactive=1)
    response = client.get(f"/api/v1/customers/{customer.id}", headers=auth_headers(admin))
    assert response.json()["active_miners"] == 3


# ==================== PRICING ====================

def test_second_pricing_config_closes_first(client, admin, customer):
    headers = auth_headers(admin)
    first = client.post("/api/v1/pricing-configs", headers=headers, json={
        "user_id": customer.id, "unit_price": "25.50", "effective_from": "2025-01-01T00:00:00",
    })
    assert first.status_code == 201
    second = client.post("/api/v1/pricing-configs", headers=headers, json={
        "user_id": customer.id, "unit_price": "30.00", "effective_from": "2025-03-01T00:00:00",
    })
    assert second.status_code == 201

    configs = client.get("/api/v1/pricing-configs", params={"customer_id": customer.id}, headers=headers).json()
    by_id = {c["id"]: c for c in configs["data"]}
    assert by_id[first.json()["data"]["id"]]["effective_to"] == "2025-03-01T00:00:00"
    assert by_id[second.json()["data"]["id"]]["effective_to"] is None

    resolved = client.get("/api/v1/pricing-configs/resolve", headers=headers, params={
        "customer_id": customer.id, "at": "2025-02-15T00:00:00",
    }).json()
    assert resolved["unit_price"] == 25.5
    assert resolved["source"] == "customer"


def test_out_of_range_price_is_400(client, admin, customer):
    response = client.post("/api/v1/pricing-configs", headers=auth_headers(admin), json={
        "user_id": customer.id, "unit_price": "0", "effective_from": "2025-01-01T00:00:00",
    })
    assert response.status_code == 400


# ==================== INVOICE LIFECYCLE ====================

def test_invoice_lifecycle(client, admin, customer, mailer):
    headers = auth_headers(admin)

    created = client.post("/api/v1/invoices", headers=headers, json={
        "user_id": customer.id, "total_miners": 10, "unit_price": "25.50",
    })
    assert created.status_code == 201
    invoice = created.json()["data"]
    assert invoice["total_amount"] == 255.0
    assert invoice["status"] == "DRAFT"

    issued = client.post(f"/api/v1/invoices/{invoice['id']}/issue", headers=headers)
    assert issued.status_code == 200
    assert issued.json()["data"]["status"] == "ISSUED"
    assert issued.json()["email"]["success"] is True
    assert mailer.sent[0]["crypto_payment_url"] == "https://pay.example.com/cf_1"

    edit = client.patch(f"/api/v1/invoices/{invoice['id']}", headers=headers, json={"total_miners": 11})
    assert edit.status_code == 409

    partial = client.post(f"/api/v1/invoices/{invoice['id']}/record-payment", headers=headers,
                          json={"amount": "100.00"})
    assert partial.status_code == 201
    assert partial.json()["invoice"]["status"] == "ISSUED"
    assert partial.json()["summary"]["balance_due"] == 155.0

    rest = client.post(f"/api/v1/invoices/{invoice['id']}/record-payment", headers=headers,
                       json={"amount": "155.00"})
    assert rest.json()["invoice"]["status"] == "PAID"
    assert rest.json()["invoice"]["paid_date"] is not None

    cancel = client.post(f"/api/v1/invoices/{invoice['id']}/cancel", headers=headers)
    assert cancel.status_code == 409
    assert "Cannot cancel" in cancel.json()["detail"]

    detail = client.get(f"/api/v1/invoices/{invoice['id']}", headers=headers).json()
    assert detail["status"] == "PAID"
    assert len(detail["payments"]) == 2

    log = client.get(f"/api/v1/invoices/{invoice['id']}/audit-log", headers=headers).json()
    actions = {entry["action"] for entry in log["data"]}
    assert {"INVOICE_CREATED", "INVOICE_ISSUED", "PAYMENT_ADDED", "INVOICE_PAID"} <= actions

    notifications = client.get(f"/api/v1/invoices/{invoice['id']}/notifications", headers=headers).json()
    types = {n["notification_type"] for n in notifications["data"]}
    assert types == {"INVOICE_ISSUED", "PAYMENT_RECEIVED"}


def test_client_sees_only_own_invoices(client, make_invoice, customer, other_customer):
    mine = make_invoice()
    make_invoice(user=other_customer)

    listed = client.get("/api/v1/invoices", params={"customer_id": other_customer.id},
                        headers=auth_headers(customer)).json()
    assert listed["count"] == 1
    assert listed["data"][0]["id"] == mine.id

    foreign = make_invoice(user=other_customer)
    response = client.get(f"/api/v1/invoices/{foreign.id}", headers=auth_headers(customer))
    assert response.status_code == 403


def test_client_cannot_create_invoices(client, customer):
    response = client.post("/api/v1/invoices", headers=auth_headers(customer),
                           json={"user_id": customer.id, "total_miners": 1, "unit_price": "1"})
    assert response.status_code == 403


def test_link_payment_endpoint(client, admin, customer, make_invoice):
    headers = auth_headers(admin)
    invoice = make_invoice(issue=True)
    payment = client.post("/api/v1/payments", headers=headers, json={
        "user_id": customer.id, "amount": "255.00",
    }).json()["data"]

    linked = client.post(f"/api/v1/payments/{payment['id']}/link", headers=headers,
                         json={"invoice_id": invoice.id})
    assert linked.status_code == 200
    assert linked.json()["invoice"]["status"] == "PAID"

    again = client.post(f"/api/v1/payments/{payment['id']}/link", headers=headers,
                        json={"invoice_id": invoice.id})
    assert again.status_code == 200


def test_overdue_sweep_endpoint(client, admin):
    response = client.post("/api/v1/invoices/overdue-sweep", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["count"] == 0


def test_unknown_invoice_is_404(client, admin):
    response = client.get("/api/v1/invoices/9999", headers=auth_headers(admin))
    assert response.status_code == 404
    assert response.json() == {"detail": "Invoice not found"}


def test_miners_drive_invoice_defaults(client, admin, customer):
    headers = auth_headers(admin)
    for name in ("S21-a", "S21-b"):
        added = client.post("/api/v1/miners", headers=headers, json={"user_id": customer.id, "name": name})
        assert added.status_code == 201
    miner_id = added.json()["data"]["id"]

    assert client.delete(f"/api/v1/miners/{miner_id}", headers=headers).status_code == 200

    own = client.get("/api/v1/miners", headers=auth_headers(customer)).json()
    assert own["count"] == 1

    invoice = client.post("/api/v1/invoices", headers=headers, json={"user_id": customer.id}).json()["data"]
    assert invoice["total_miners"] == 1
    assert invoice["unit_price"] == 199.05


# ==================== TIMEZONE-AWARE INPUT ====================

def test_invoice_dates_with_utc_offset(client, admin, customer):
    headers = auth_headers(admin)
    due = (get_utc_now() + timedelta(days=30)).replace(microsecond=0)

    created = client.post("/api/v1/invoices", headers=headers, json={
        "user_id": customer.id, "total_miners": 4, "unit_price": "10.00",
        "due_date": due.isoformat() + "Z",
    })
    assert created.status_code == 201
    invoice = created.json()["data"]
    assert invoice["due_date"] == due.isoformat()

    later = due + timedelta(days=5)
    edited = client.patch(f"/api/v1/invoices/{invoice['id']}", headers=headers, json={
        "due_date": (later + timedelta(hours=3)).isoformat() + "+03:00",
    })
    assert edited.status_code == 200
    assert edited.json()["data"]["due_date"] == later.isoformat()


def test_pricing_configs_with_utc_offset(client, admin, customer):
    headers = auth_headers(admin)
    first = client.post("/api/v1/pricing-configs", headers=headers, json={
        "user_id": customer.id, "unit_price": "25.50", "effective_from": "2026-01-01T00:00:00Z",
    })
    assert first.status_code == 201
    second = client.post("/api/v1/pricing-configs", headers=headers, json={
        "user_id": customer.id, "unit_price": "30.00", "effective_from": "2026-06-01T00:00:00Z",
    })
    assert second.status_code == 201

    configs = client.get("/api/v1/pricing-configs", params={"customer_id": customer.id}, headers=headers).json()
    by_id = {c["id"]: c for c in configs["data"]}
    assert by_id[first.json()["data"]["id"]]["effective_to"] == "2026-06-01T00:00:00"

    closed = client.patch(f"/api/v1/pricing-configs/{second.json()['data']['id']}", headers=headers, json={
        "effective_to": "2026-12-01T02:00:00+02:00",
    })
    assert closed.status_code == 200
    assert closed.json()["data"]["effective_to"] == "2026-12-01T00:00:00"

    resolved = client.get("/api/v1/pricing-configs/resolve", headers=headers, params={
        "customer_id": customer.id, "at": "2026-07-01T00:00:00Z",
    }).json()
    assert resolved["unit_price"] == 30.0


def test_payment_dates_with_utc_offset(client, admin, customer, make_invoice):
    headers = auth_headers(admin)
    invoice = make_invoice(issue=True, total_miners=2, unit_price=Decimal("50.00"))

    recorded = client.post(f"/api/v1/invoices/{invoice.id}/record-payment", headers=headers, json={
        "amount": "40.00", "payment_date": "2026-01-15T10:00:00+02:00",
    })
    assert recorded.status_code == 201
    assert recorded.json()["payment"]["payment_date"] == "2026-01-15T08:00:00"

    created = client.post("/api/v1/payments", headers=headers, json={
        "user_id": customer.id, "amount": "60.00", "payment_date": "2026-01-16T00:00:00Z",
    })
    assert created.status_code == 201
    payment_id = created.json()["data"]["id"]
    assert created.json()["data"]["payment_date"] == "2026-01-16T00:00:00"

    linked = client.post(f"/api/v1/payments/{payment_id}/link", headers=headers, json={
        "invoice_id": invoice.id, "paid_date": "2026-01-16T00:00:00Z",
    })
    assert linked.status_code == 200
    assert linked.json()["invoice"]["status"] == "PAID"


def test_statement_range_with_utc_offset(client, admin, customer, make_invoice):
    make_invoice(issue=True)
    response = client.get(f"/api/v1/statements/{customer.id}", headers=auth_headers(admin), params={
        "from_date": "2000-01-01T00:00:00Z", "to_date": "2100-01-01T00:00:00+01:00",
    })
    assert response.status_code == 200
    assert response.json()["stats"]["total_invoices"] == 1


# ==================== PDF DOWNLOAD / BALANCES ====================

def test_invoice_pdf_download(client, admin, customer, other_customer, make_invoice):
    invoice = make_invoice(issue=True)
    url = f"/api/v1/invoices/{invoice.id}/download"

    own = client.get(url, headers=auth_headers(customer))
    assert own.status_code == 200
    assert own.headers["content-type"] == "application/pdf"
    assert own.content.startswith(b"%PDF")
    assert f'invoice-{invoice.invoice_number}.pdf' in own.headers["content-disposition"]

    assert client.get(url, headers=auth_headers(admin)).status_code == 200
    assert client.get(url, headers=auth_headers(other_customer)).status_code == 403
    assert client.get(url).status_code in (401, 403)
    assert client.get("/api/v1/invoices/9999/download", headers=auth_headers(admin)).status_code == 404


def test_customer_balances(client, admin, customer, other_customer, make_user):
    headers = auth_headers(admin)
    third = make_user("carol@example.com")
    for user_id, amount in (
        (customer.id, "100.00"), (customer.id, "-30.00"),
        (other_customer.id, "-45.50"),
        (third.id, "20.00"), (third.id, "-20.00"),
    ):
        response = client.post("/api/v1/payments", headers=headers, json={
            "user_id": user_id, "amount": amount, "type": "ADJUSTMENT",
        })
        assert response.status_code == 201

    data = client.get("/api/v1/payments/balances", headers=headers).json()["data"]
    assert data == {
        "total_positive_balance": 70.0,
        "total_negative_balance": -45.5,
        "positive_customer_count": 1,
        "negative_customer_count": 1,
    }

    assert client.get("/api/v1/payments/balances", headers=auth_headers(customer)).status_code == 403
