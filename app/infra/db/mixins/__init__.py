"""
Database mixins for modular organization.
"""
from .catalog import CatalogMixin
from .notifications import NotificationMixin
from .orders import OrderMixin
from .users import UserMixin

__all__ = [
    "CatalogMixin",
    "NotificationMixin",
    "OrderMixin",
    "UserMixin",
]
