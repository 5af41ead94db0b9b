from .auth import User, SessionToken
from .catalog import Category, Location, Product, StockLocation
from .partners import Supplier, Customer
from .documents import Purchase, PurchaseItem, Sale, SaleItem, DocumentSequence
from .ledger import StockMovement
from .settings import Settings

__all__ = [
    'User', 'SessionToken',
    'Category', 'Location', 'Product', 'StockLocation',
    'Supplier', 'Customer',
    'Purchase', 'PurchaseItem', 'Sale', 'SaleItem', 'DocumentSequence',
    'StockMovement',
    'Settings',
]
