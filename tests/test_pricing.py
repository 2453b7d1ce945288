from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.exceptions import ConflictError, InvalidRequestError, NotFoundError
from database.models import PricingDefault, CustomerPricingConfig, AuditLog, AuditAction
from database.seed import ensure_default_pricing
from services.pricing import PricingService, validate_unit_price


JAN = datetime(2025, 1, 1)
FEB = datetime(2025, 2, 1)
MAR = datetime(2025, 3, 1)


@pytest.fixture
def pricing(db_session):
    return PricingService(db_session)


def test_resolve_falls_back_to_default(pricing, customer):
    result = pricing.resolve(customer.id, JAN)
    assert result["source"] == "default"
    assert result["unit_price"] == Decimal("199.05")
    assert result["config_id"] is None


def test_resolve_without_default_fails(db_session, pricing, customer):
    db_session.query(PricingDefault).delete()
    db_session.commit()
    with pytest.raises(InvalidRequestError, match="No pricing information"):
        pricing.resolve(customer.id, JAN)


def test_ensure_default_pricing_is_idempotent(db_session):
    first = ensure_default_pricing(db_session)
    first.unit_price = Decimal("150.00")
    db_session.commit()

    again = ensure_default_pricing(db_session)
    assert again.id == first.id
    assert Decimal(again.unit_price) == Decimal("150.00")
    assert db_session.query(PricingDefault).count() == 1


def test_customer_config_applies_inside_its_interval(pricing, customer, admin):
    config = pricing.create_config(customer.id, Decimal("25.50"), FEB, actor_id=admin.id)

    assert pricing.resolve(customer.id, JAN)["source"] == "default"
    inside = pricing.resolve(customer.id, FEB)
    assert inside["source"] == "customer"
    assert inside["config_id"] == config.id
    assert inside["unit_price"] == Decimal("25.50")


def test_second_config_closes_the_first(db_session, pricing, customer, admin):
    first = pricing.create_config(customer.id, Decimal("25.50"), JAN, actor_id=admin.id)
    second = pricing.create_config(customer.id, Decimal("30.00"), MAR, actor_id=admin.id)

    db_session.refresh(first)
    assert first.effective_to == MAR
    assert second.effective_to is None

    # half-open: the boundary belongs to the new config
    assert pricing.resolve_unit_price(customer.id, datetime(2025, 2, 28, 23, 59)) == Decimal("25.50")
    assert pricing.resolve_unit_price(customer.id, MAR) == Decimal("30.00")

    open_configs = db_session.query(CustomerPricingConfig).filter(
        CustomerPricingConfig.user_id == customer.id,
        CustomerPricingConfig.effective_to == None,
    ).count()
    assert open_configs == 1

    actions = [e.action for e in db_session.query(AuditLog).order_by(AuditLog.id)]
    assert AuditAction.PRICING_CONFIG_ARCHIVED in actions
    assert actions.count(AuditAction.PRICING_CONFIG_CREATED) == 2


def test_new_config_must_start_after_open_one(pricing, customer):
    pricing.create_config(customer.id, Decimal("25.50"), FEB)
    with pytest.raises(ConflictError):
        pricing.create_config(customer.id, Decimal("30.00"), FEB)
    with pytest.raises(ConflictError):
        pricing.create_config(customer.id, Decimal("30.00"), JAN)


def test_bounded_config_cannot_overlap(pricing, customer):
    pricing.create_config(customer.id, Decimal("20.00"), JAN, effective_to=FEB)
    with pytest.raises(ConflictError, match="Overlaps"):
        pricing.create_config(customer.id, Decimal("21.00"), datetime(2025, 1, 15), effective_to=MAR)


def test_effective_to_must_follow_effective_from(pricing, customer):
    with pytest.raises(InvalidRequestError):
        pricing.create_config(customer.id, Decimal("20.00"), FEB, effective_to=JAN)


def test_unknown_customer(pricing):
    with pytest.raises(NotFoundError):
        pricing.create_config(9999, Decimal("20.00"), JAN)


@pytest.mark.parametrize("price", ["0", "0.001", "10000.01", "-5", "abc"])
def test_unit_price_out_of_range(price):
    with pytest.raises(InvalidRequestError):
        validate_unit_price(price)


def test_unit_price_bounds_are_inclusive():
    assert validate_unit_price("0.01") == Decimal("0.01")
    assert validate_unit_price("10000") == Decimal("10000.00")


def test_update_config_price_is_audited(db_session, pricing, customer, admin):
    config = pricing.create_config(customer.id, Decimal("25.50"), JAN)
    updated = pricing.update_config(config.id, {"unit_price": Decimal("26.00")}, actor_id=admin.id)
    assert Decimal(updated.unit_price) == Decimal("26.00")

    entry = db_session.query(AuditLog).filter(
        AuditLog.action == AuditAction.PRICING_CONFIG_UPDATED
    ).one()
    assert entry.changes["unit_price"] == {"from": "25.50", "to": "26.00"}
    assert entry.user_id == admin.id


def test_reopening_closed_config_conflicts_with_open_one(pricing, customer):
    first = pricing.create_config(customer.id, Decimal("25.50"), JAN)
    pricing.create_config(customer.id, Decimal("30.00"), MAR)
    with pytest.raises(ConflictError):
        pricing.update_config(first.id, {"effective_to": None})


def test_find_config_agrees_with_interval_bounds(pricing, customer):
    first = pricing.create_config(customer.id, Decimal("25.50"), JAN)
    pricing.create_config(customer.id, Decimal("30.00"), MAR)

    found = pricing.find_config(customer.id, FEB)
    assert found.id == first.id
    assert found.covers(FEB)
    assert found.covers(JAN)
    # effective_to is exclusive
    assert not found.covers(MAR)
    assert pricing.find_config(customer.id, MAR).covers(MAR)
    assert pricing.find_config(customer.id, datetime(2024, 12, 31)) is None


def test_resolve_accepts_timezone_aware_dates(pricing, customer):
    pricing.create_config(customer.id, Decimal("25.50"), FEB)
    at = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)
    result = pricing.resolve(customer.id, at)
    assert result["source"] == "customer"
    assert result["at"].tzinfo is None
