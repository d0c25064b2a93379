from .auth import User, SessionToken
from .customers import Customer, LoyaltyTransaction
from .inventory import Product, StockMovement, StockBatch
from .sales import Sale, SaleItem, SALE_STATUSES, TERMINAL_SALE_STATUSES

__all__ = [
    'User', 'SessionToken',
    'Customer', 'LoyaltyTransaction',
    'Product', 'StockMovement', 'StockBatch',
    'Sale', 'SaleItem', 'SALE_STATUSES', 'TERMINAL_SALE_STATUSES',
]
