"""
Database package for the mining hosting billing API.

Usage:
    from database import db, get_db, init_db
    from database.models import User, Invoice, CostPayment
"""

from .base import Base, BaseModel, TimestampMixin, SoftDeleteMixin, get_utc_now
from .connection import (
    DatabaseConnection,
    db,
    get_db,
    init_db,
    reset_db,
)

# Import all models to ensure they are registered with SQLAlchemy
from .models import *


__all__ = [
    # Base
    'Base',
    'BaseModel',
    'TimestampMixin',
    'SoftDeleteMixin',
    'get_utc_now',

    # Connection
    'DatabaseConnection',
    'db',
    'get_db',
    'init_db',
    'reset_db',
]
