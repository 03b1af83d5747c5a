from .customer import Customer
from .product import Product, ProductVariant
from .order import Order, OrderItem, OrderStatusHistory
from .sync_settings import SyncSettings
from .sync_log import SyncLog
from .import_job import ImportJob
from .webhook import WebhookEvent

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Customer',
    'Product',
    'ProductVariant',
    'Order',
    'OrderItem',
    'OrderStatusHistory',
    'SyncSettings',
    'SyncLog',
    'ImportJob',
    'WebhookEvent',
]
