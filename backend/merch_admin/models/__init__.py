from .catalog import Category, Product, ProductVariant, ProductImage
from .inventory import StockMovement
from .stands import Stand, StandStock
from .orders import Order, OrderItem
from .auth import User, SessionToken

__all__ = [
    'Category', 'Product', 'ProductVariant', 'ProductImage',
    'StockMovement',
    'Stand', 'StandStock',
    'Order', 'OrderItem',
    'User', 'SessionToken',
]
