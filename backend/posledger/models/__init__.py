from .auth import User, SessionToken
from .inventory import Product, StockMovement, PriceHistory, StockAdjustment
from .purchasing import Supplier, Purchase, PurchaseItem, PurchasePayment
from .customers import Customer, CustomerPayment
from .sales import Sale, SaleItem, SalesReturn, SalesReturnItem, InvoiceSequence
from .immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    'User', 'SessionToken',
    'Product', 'StockMovement', 'PriceHistory', 'StockAdjustment',
    'Supplier', 'Purchase', 'PurchaseItem', 'PurchasePayment',
    'Customer', 'CustomerPayment',
    'Sale', 'SaleItem', 'SalesReturn', 'SalesReturnItem', 'InvoiceSequence',
]
