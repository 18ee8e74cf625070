from .agencies import Agency, DeliveryAgent
from .inventory import Product, InventoryRecord, VariantStock
from .orders import Order, OrderItem
from .auth import User, SessionToken, LoginOTP

__all__ = [
    'Agency', 'DeliveryAgent',
    'Product', 'InventoryRecord', 'VariantStock',
    'Order', 'OrderItem',
    'User', 'SessionToken', 'LoginOTP',
]
