"""
Main Database class combining all mixins.
"""
from __future__ import annotations

from .core import DatabaseCore
from .mixins import CatalogMixin, NotificationMixin, OrderMixin, UserMixin
from .schema import SchemaMixin


class Database(
    DatabaseCore,
    SchemaMixin,
    UserMixin,
    CatalogMixin,
    OrderMixin,
    NotificationMixin,
):
    """PostgreSQL database with connection pooling.

    One instance serves the catalog, orders, notifications and user-directory
    roles consumed by the services.
    """
