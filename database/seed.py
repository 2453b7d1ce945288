"""
Database seed: system default pricing and the first admin account.
"""
from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from core.config import settings
from .base import get_utc_now
from .models import PricingDefault, DEFAULT_PRICING_KEY, User, RoleType


def _upsert_ignore(session: Session, table, values: dict):
    """INSERT ... ON CONFLICT DO NOTHING for the dialects we run on."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing(index_elements=["key"])
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing(index_elements=["key"])
    else:
        if session.query(PricingDefault).filter(PricingDefault.key == values["key"]).first():
            return
        stmt = insert(table).values(**values)
    session.execute(stmt)


def ensure_default_pricing(session: Session) -> PricingDefault:
    """
    Create the system default pricing row if it is missing.
    Safe to run concurrently and repeatedly; an existing row is left untouched.
    """
    now = get_utc_now()
    _upsert_ignore(session, PricingDefault.__table__, {
        "key": DEFAULT_PRICING_KEY,
        "unit_price": settings.DEFAULT_UNIT_PRICE,
        "due_days": settings.DEFAULT_DUE_DAYS,
        "created_at": now,
        "updated_at": now,
    })
    session.commit()
    return session.query(PricingDefault).filter(PricingDefault.key == DEFAULT_PRICING_KEY).one()


def seed_admin(session: Session):
    """Create the first super admin if no admin exists and a password is configured."""
    from core.security import get_password_hash

    if not settings.SEED_ADMIN_PASSWORD:
        print("ℹ️  SEED_ADMIN_PASSWORD not set, skipping admin seed")
        return

    existing = session.query(User).filter(User.role == RoleType.SUPER_ADMIN).first()
    if existing:
        print("ℹ️  Super admin already exists")
        return

    session.add(User(
        email=settings.SEED_ADMIN_EMAIL,
        name="Administrator",
        password_hash=get_password_hash(settings.SEED_ADMIN_PASSWORD),
        role=RoleType.SUPER_ADMIN,
        is_active=True,
    ))
    session.commit()
    print(f"✅ Super admin created (email={settings.SEED_ADMIN_EMAIL})")


def seed_all(session: Session):
    """Main seed entry point."""
    ensure_default_pricing(session)
    seed_admin(session)
