"""
Pricing service: per-customer unit price over time.

Handles:
- Resolving the unit price in effect for a customer at a date
- Creating a config (closes the previous open one in the same transaction)
- Editing a config
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import InvalidRequestError, NotFoundError, ConflictError
from database.base import get_utc_now, to_naive_utc
from database.models import (
    User, CustomerPricingConfig, PricingDefault,
    DEFAULT_PRICING_KEY, AuditAction,
)
from .audit import AuditRecorder, diff


MIN_UNIT_PRICE = Decimal("0.01")
MAX_UNIT_PRICE = Decimal("10000")


def validate_unit_price(unit_price) -> Decimal:
    try:
        price = Decimal(str(unit_price))
    except (ArithmeticError, ValueError):
        raise InvalidRequestError("Unit price must be a number")
    if price < MIN_UNIT_PRICE or price > MAX_UNIT_PRICE:
        raise InvalidRequestError(f"Unit price must be between {MIN_UNIT_PRICE} and {MAX_UNIT_PRICE}")
    return price.quantize(Decimal("0.01"))


class PricingService:
    def __init__(self, db: Session, audit: AuditRecorder = None):
        self.db = db
        self.audit = audit or AuditRecorder(db)

    # ==================== RESOLVER ====================

    def get_default(self) -> Optional[PricingDefault]:
        return self.db.query(PricingDefault).filter(
            PricingDefault.key == DEFAULT_PRICING_KEY
        ).first()

    def default_due_days(self) -> int:
        default = self.get_default()
        return default.due_days if default else settings.DEFAULT_DUE_DAYS

    def find_config(self, customer_id: int, at: datetime) -> Optional[CustomerPricingConfig]:
        """Config whose [effective_from, effective_to) contains `at`."""
        return self.db.query(CustomerPricingConfig).filter(
            CustomerPricingConfig.user_id == customer_id,
            CustomerPricingConfig.effective_from <= at,
            or_(
                CustomerPricingConfig.effective_to == None,
                CustomerPricingConfig.effective_to > at,
            )
        ).order_by(CustomerPricingConfig.effective_from.desc()).first()

    def resolve(self, customer_id: int, at: datetime = None) -> dict:
        at = to_naive_utc(at) or get_utc_now()
        config = self.find_config(customer_id, at)
        if config:
            return {
                "unit_price": Decimal(config.unit_price),
                "source": "customer",
                "config_id": config.id,
                "at": at,
            }

        default = self.get_default()
        if not default:
            raise InvalidRequestError("No pricing information available")
        return {
            "unit_price": Decimal(default.unit_price),
            "source": "default",
            "config_id": None,
            "at": at,
        }

    def resolve_unit_price(self, customer_id: int, at: datetime = None) -> Decimal:
        return self.resolve(customer_id, at)["unit_price"]

    # ==================== CONFIGS ====================

    def list_configs(self, customer_id: int = None) -> List[CustomerPricingConfig]:
        query = self.db.query(CustomerPricingConfig)
        if customer_id is not None:
            query = query.filter(CustomerPricingConfig.user_id == customer_id)
        return query.order_by(
            CustomerPricingConfig.user_id,
            CustomerPricingConfig.effective_from.desc()
        ).all()

    def get_config(self, config_id: int) -> CustomerPricingConfig:
        config = self.db.query(CustomerPricingConfig).filter(
            CustomerPricingConfig.id == config_id
        ).first()
        if not config:
            raise NotFoundError("Pricing config not found")
        return config

    def _open_config(self, customer_id: int, lock: bool = False) -> Optional[CustomerPricingConfig]:
        query = self.db.query(CustomerPricingConfig).filter(
            CustomerPricingConfig.user_id == customer_id,
            CustomerPricingConfig.effective_to == None,
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def _overlapping(self, customer_id: int, start: datetime, end: Optional[datetime], exclude_ids=()):
        query = self.db.query(CustomerPricingConfig).filter(
            CustomerPricingConfig.user_id == customer_id,
            or_(
                CustomerPricingConfig.effective_to == None,
                CustomerPricingConfig.effective_to > start,
            )
        )
        if end is not None:
            query = query.filter(CustomerPricingConfig.effective_from < end)
        if exclude_ids:
            query = query.filter(CustomerPricingConfig.id.notin_(list(exclude_ids)))
        return query.first()

    def create_config(
        self,
        customer_id: int,
        unit_price,
        effective_from: datetime,
        effective_to: datetime = None,
        actor_id: int = None,
    ) -> CustomerPricingConfig:
        """
        Insert a config and close the customer's open one at the new
        effective_from. Both writes commit together; the customer row lock
        serializes concurrent creates for the same customer.
        """
        price = validate_unit_price(unit_price)
        if effective_to is not None and effective_to <= effective_from:
            raise InvalidRequestError("effective_to must be after effective_from")

        customer = self.db.query(User).filter(
            User.id == customer_id,
            User.is_deleted == False
        ).with_for_update().first()
        if not customer:
            raise NotFoundError("Customer not found")

        previous = self._open_config(customer_id, lock=True)
        if previous and effective_from <= previous.effective_from:
            self.db.rollback()
            raise ConflictError(
                "effective_from must be after the current open config's effective_from "
                f"({previous.effective_from.isoformat()})"
            )

        exclude = [previous.id] if previous else []
        clash = self._overlapping(customer_id, effective_from, effective_to, exclude)
        if clash:
            self.db.rollback()
            raise ConflictError(f"Overlaps existing pricing config #{clash.id}")

        archived = None
        if previous:
            archived = {
                "id": previous.id,
                "effective_to": {"from": None, "to": effective_from},
            }
            previous.effective_to = effective_from
            previous.updated_by = actor_id
            # Close before insert so the one-open-config index never sees two
            self.db.flush()

        config = CustomerPricingConfig(
            user_id=customer_id,
            unit_price=price,
            effective_from=effective_from,
            effective_to=effective_to,
            created_by=actor_id,
            updated_by=actor_id,
        )
        self.db.add(config)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("A pricing config for this customer already starts at that date")
        self.db.refresh(config)

        if archived:
            self.audit.record(
                AuditAction.PRICING_CONFIG_ARCHIVED, "CustomerPricingConfig", archived["id"],
                f"Pricing config #{archived['id']} closed by new config #{config.id}",
                user_id=actor_id,
                changes={"effective_to": archived["effective_to"]},
            )
        self.audit.record(
            AuditAction.PRICING_CONFIG_CREATED, "CustomerPricingConfig", config.id,
            f"Pricing config created for {customer.email}: {price} from {effective_from.date().isoformat()}",
            user_id=actor_id,
            changes={"unit_price": price, "effective_from": effective_from, "effective_to": effective_to},
        )
        return config

    def update_config(self, config_id: int, data: dict, actor_id: int = None) -> CustomerPricingConfig:
        """
        data may hold unit_price and/or effective_to. An explicit
        effective_to of None reopens the config.
        """
        config = self.db.query(CustomerPricingConfig).filter(
            CustomerPricingConfig.id == config_id
        ).with_for_update().first()
        if not config:
            raise NotFoundError("Pricing config not found")

        before = {"unit_price": config.unit_price, "effective_to": config.effective_to}
        after = dict(before)

        if data.get("unit_price") is not None:
            after["unit_price"] = validate_unit_price(data["unit_price"])

        if "effective_to" in data:
            new_to = data["effective_to"]
            if new_to is None:
                if config.effective_to is not None:
                    other = self._open_config(config.user_id)
                    if other and other.id != config.id:
                        self.db.rollback()
                        raise ConflictError("Customer already has an open pricing config")
            elif new_to <= config.effective_from:
                self.db.rollback()
                raise InvalidRequestError("effective_to must be after effective_from")

            clash = self._overlapping(config.user_id, config.effective_from, new_to, [config.id])
            if clash:
                self.db.rollback()
                raise ConflictError(f"Overlaps existing pricing config #{clash.id}")
            after["effective_to"] = new_to

        changes = diff(before, after)
        if not changes:
            self.db.rollback()
            return config

        config.unit_price = after["unit_price"]
        config.effective_to = after["effective_to"]
        config.updated_by = actor_id
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Customer already has an open pricing config")
        self.db.refresh(config)

        self.audit.record(
            AuditAction.PRICING_CONFIG_UPDATED, "CustomerPricingConfig", config.id,
            f"Pricing config #{config.id} updated",
            user_id=actor_id,
            changes=changes,
        )
        return config


def config_to_dict(config: CustomerPricingConfig) -> dict:
    return {
        "id": config.id,
        "user_id": config.user_id,
        "unit_price": float(config.unit_price),
        "effective_from": config.effective_from.isoformat(),
        "effective_to": config.effective_to.isoformat() if config.effective_to else None,
        "is_open": config.is_open,
        "created_by": config.created_by,
        "updated_by": config.updated_by,
        "created_at": config.created_at.isoformat() if config.created_at else None,
    }
