"""
Database schema initialization.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT UNIQUE,
        role TEXT NOT NULL DEFAULT 'user',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS restaurants (
        restaurant_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        owner_id TEXT REFERENCES users(user_id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS menu_items (
        menu_item_id TEXT PRIMARY KEY,
        restaurant_id TEXT NOT NULL REFERENCES restaurants(restaurant_id),
        name TEXT NOT NULL,
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        image TEXT NOT NULL DEFAULT '',
        is_available BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        restaurant_id TEXT NOT NULL,
        delivery_partner_id TEXT,
        items JSONB NOT NULL,
        subtotal NUMERIC(10, 2) NOT NULL CHECK (subtotal >= 0),
        delivery_fee NUMERIC(10, 2) NOT NULL CHECK (delivery_fee >= 0),
        tax NUMERIC(10, 2) NOT NULL CHECK (tax >= 0),
        total NUMERIC(10, 2) NOT NULL CHECK (total >= 0),
        status TEXT NOT NULL DEFAULT 'pending',
        payment_status TEXT NOT NULL DEFAULT 'pending',
        payment_method JSONB NOT NULL,
        payment_intent_id TEXT,
        refund_id TEXT,
        delivery_address JSONB NOT NULL,
        special_instructions TEXT,
        estimated_delivery_time TIMESTAMPTZ NOT NULL,
        actual_delivery_time TIMESTAMPTZ,
        rating SMALLINT CHECK (rating BETWEEN 1 AND 5),
        review TEXT,
        status_history JSONB NOT NULL DEFAULT '[]'::jsonb,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_user_created ON orders (user_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_orders_restaurant_status ON orders (restaurant_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_status_created ON orders (status, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_orders_partner ON orders (delivery_partner_id, status)",
    """
    CREATE TABLE IF NOT EXISTS notifications (
        notification_id TEXT PRIMARY KEY,
        recipient_id TEXT NOT NULL,
        recipient_role TEXT NOT NULL,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        related_order_id TEXT,
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_notifications_recipient
        ON notifications (recipient_id, is_read, created_at DESC)
    """,
)


class SchemaMixin:
    """Mixin for database schema initialization."""

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self.get_connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.info("Database schema ready")
