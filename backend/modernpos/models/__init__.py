from .catalog import Product, ProductVariant, TaxGroup, Supplier
from .inventory import InventoryMovement, RemovalType
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .sales import Cart, CartLine, Transaction, TransactionLine, TransactionPayment
from .discounts import Discount
from .customers import Customer
from .estimations import Estimation, EstimationLine
from .shifts import Shift
from .documents import ActivityEvent, DocumentSequence
from .expenses import Expense

__all__ = [
    'Product', 'ProductVariant', 'TaxGroup', 'Supplier',
    'InventoryMovement', 'RemovalType',
    'PurchaseOrder', 'PurchaseOrderItem',
    'Cart', 'CartLine', 'Transaction', 'TransactionLine', 'TransactionPayment',
    'Discount',
    'Customer',
    'Estimation', 'EstimationLine',
    'Shift',
    'ActivityEvent', 'DocumentSequence',
    'Expense',
]
