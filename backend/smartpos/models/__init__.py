from .tenancy import Store, Employee
from .catalog import Product, Batch
from .inventory import Stock
from .customers import Customer, LoyaltySetting
from .orders import Order, OrderItem, PaymentRequest
from .refunds import Refund, RefundItem, RefundEvidence
from .documents import AuditEvent, DocumentSequence

__all__ = [
    'Store', 'Employee',
    'Product', 'Batch',
    'Stock',
    'Customer', 'LoyaltySetting',
    'Order', 'OrderItem', 'PaymentRequest',
    'Refund', 'RefundItem', 'RefundEvidence',
    'AuditEvent', 'DocumentSequence',
]
