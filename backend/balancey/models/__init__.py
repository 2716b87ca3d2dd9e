from .customers import Customer, CustomerTag
from .inventory import Product, Inventory, InventoryAdjustment
from .orders import Order, OrderItem, Payment, Fulfillment, OrderPolicy
from .settings import Settings

__all__ = [
    'Customer', 'CustomerTag',
    'Product', 'Inventory', 'InventoryAdjustment',
    'Order', 'OrderItem', 'Payment', 'Fulfillment', 'OrderPolicy',
    'Settings',
]
