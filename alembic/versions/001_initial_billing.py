"""Initial billing schema

Revision ID: 001_initial_billing
Revises: (none)
Create Date: 2026-10-18

Creates all tables from the SQLAlchemy models and seeds the system
default pricing row.
"""

from alembic import op

revision = '001_initial_billing'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create all tables from SQLAlchemy models."""
    conn = op.get_bind()

    # Import all models so they register with Base.metadata
    from database.base import Base
    from database import models  # noqa: F401

    Base.metadata.create_all(bind=conn, checkfirst=True)
    print("✅ All tables created from SQLAlchemy models")

    from sqlalchemy.orm import Session
    from database.seed import ensure_default_pricing
    session = Session(bind=conn)
    try:
        ensure_default_pricing(session)
    finally:
        session.close()
    print("✅ Default pricing row seeded")


def downgrade():
    """Drop all tables."""
    conn = op.get_bind()

    from database.base import Base
    from database import models  # noqa: F401

    Base.metadata.drop_all(bind=conn)
    print("✅ All tables dropped")
