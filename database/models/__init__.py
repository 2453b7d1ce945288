"""
Database models package.
Export all models for easy importing.
"""

# Users (MUST be imported first - other models depend on it)
from .user import (
    RoleType,
    ADMIN_ROLES,
    Group,
    User,
)

# Hosted miners
from .miner import (
    MinerStatus,
    Miner,
)

# Pricing
from .pricing import (
    DEFAULT_PRICING_KEY,
    PricingDefault,
    CustomerPricingConfig,
)

# Invoices and payments
from .invoice import (
    InvoiceStatus,
    InvoiceType,
    PaymentType,
    Invoice,
    CostPayment,
)

# Audit and notifications
from .audit import (
    AuditAction,
    NotificationType,
    NotificationStatus,
    AuditLog,
    InvoiceNotification,
)

# Bulk email runs
from .email_run import (
    EmailRunStatus,
    EmailSendRun,
    EmailSendResult,
)

# Crypto payments
from .confirmo import (
    ConfirmoPaymentStatus,
    ConfirmoPayment,
)


__all__ = [
    'RoleType', 'ADMIN_ROLES', 'Group', 'User',
    'MinerStatus', 'Miner',
    'DEFAULT_PRICING_KEY', 'PricingDefault', 'CustomerPricingConfig',
    'InvoiceStatus', 'InvoiceType', 'PaymentType', 'Invoice', 'CostPayment',
    'AuditAction', 'NotificationType', 'NotificationStatus', 'AuditLog', 'InvoiceNotification',
    'EmailRunStatus', 'EmailSendRun', 'EmailSendResult',
    'ConfirmoPaymentStatus', 'ConfirmoPayment',
]
