from .tenancy import Store
from .users import User
from .customers import Customer
from .inventory import Product, StockMovement
from .sales import Sale, SaleLine
from .cash import CashSession, CashMovement
from .documents import DocumentSequence

__all__ = [
    'Store', 'User', 'Customer',
    'Product', 'StockMovement',
    'Sale', 'SaleLine',
    'CashSession', 'CashMovement',
    'DocumentSequence',
]
