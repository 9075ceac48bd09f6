from .account import Account, ROLE_ADMIN, ROLE_BUSINESS, ROLE_CUSTOMER
from .payment_identity import PaymentIdentity
from .payment_instrument import PaymentInstrument
from .subscription import Subscription
from .audit_log import AuditLogEntry
from .account_action import AccountAction
from .refund import Refund
from .webhook_delivery import WebhookDelivery

__all__ = [
    "Account",
    "PaymentIdentity",
    "PaymentInstrument",
    "Subscription",
    "AuditLogEntry",
    "AccountAction",
    "Refund",
    "WebhookDelivery",
    "ROLE_ADMIN",
    "ROLE_BUSINESS",
    "ROLE_CUSTOMER",
]
