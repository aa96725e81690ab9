from .auth import User, SessionToken, ROLES
from .clients import Client, ClientClass
from .inventory import Product, InventoryMovement, MovementDirection
from .sales import Sale, SaleLine, SaleType, SaleStatus, DiscountType
from .credits import Credit, Payment, CreditStatus, PaymentMethod, OUTSTANDING_STATUSES, TERMINAL_STATUSES
from .audit import AuditEvent

__all__ = [
    'User', 'SessionToken', 'ROLES',
    'Client', 'ClientClass',
    'Product', 'InventoryMovement', 'MovementDirection',
    'Sale', 'SaleLine', 'SaleType', 'SaleStatus', 'DiscountType',
    'Credit', 'Payment', 'CreditStatus', 'PaymentMethod',
    'OUTSTANDING_STATUSES', 'TERMINAL_STATUSES',
    'AuditEvent',
]
