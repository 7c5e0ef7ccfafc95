"""
Order-related database operations.
"""
from __future__ import annotations

import logging
from typing import Any

from psycopg import sql
from psycopg.types.json import Jsonb

from app.domain.order import Order
from app.domain.protocols import ORDER_BY_CHOICES, OrderFilter

logger = logging.getLogger(__name__)

_ORDER_BY_SQL = {
    "created_asc": "created_at ASC",
    "created_desc": "created_at DESC",
    "updated_desc": "updated_at DESC",
    "delivered_desc": "actual_delivery_time DESC NULLS LAST",
}

# Columns a patch may touch; items and money fields are fixed at creation.
_MUTABLE_COLUMNS = frozenset(
    {
        "status",
        "payment_status",
        "payment_intent_id",
        "refund_id",
        "delivery_partner_id",
        "actual_delivery_time",
        "rating",
        "review",
        "status_history",
    }
)


def _adapt_patch_value(column: str, value: Any) -> Any:
    if column == "status_history":
        return Jsonb([change.to_dict() for change in value])
    return value


class OrderMixin:
    """Mixin for order-related database operations."""

    def save_order(self, order: Order) -> Order:
        """Insert a new order and return it as stored."""
        with self.get_connection() as conn:
            row = conn.execute(
                """
                INSERT INTO orders (
                    order_id, user_id, restaurant_id, items, subtotal, delivery_fee, tax, total,
                    status, payment_status, payment_method, delivery_address,
                    special_instructions, estimated_delivery_time, status_history, version,
                    created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    order.id,
                    order.user_id,
                    order.restaurant_id,
                    Jsonb([item.to_dict() for item in order.items]),
                    order.subtotal,
                    order.delivery_fee,
                    order.tax,
                    order.total,
                    order.status,
                    order.payment_status,
                    Jsonb(order.payment_method.to_dict()),
                    Jsonb(order.delivery_address.to_dict()),
                    order.special_instructions,
                    order.estimated_delivery_time,
                    Jsonb([change.to_dict() for change in order.status_history]),
                    order.version,
                    order.created_at,
                    order.updated_at,
                ),
            ).fetchone()
        logger.info("Order %s saved for user %s", order.id, order.user_id)
        return Order.from_row(row)

    def get_order(self, order_id: str) -> Order | None:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM orders WHERE order_id = %s", (order_id,)).fetchone()
        return Order.from_row(row) if row else None

    def update_order(
        self, order_id: str, patch: dict[str, Any], *, expected_version: int | None = None
    ) -> Order | None:
        """Apply ``patch`` and bump the version.

        Returns None when ``expected_version`` no longer matches (or the order
        is gone), leaving the row untouched.
        """
        unknown = set(patch) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Order fields are not updatable: {sorted(unknown)}")

        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in patch
        ]
        assignments.append(sql.SQL("version = version + 1"))
        assignments.append(sql.SQL("updated_at = NOW()"))
        params: list[Any] = [_adapt_patch_value(column, value) for column, value in patch.items()]

        query = sql.SQL("UPDATE orders SET {} WHERE order_id = %s").format(
            sql.SQL(", ").join(assignments)
        )
        params.append(order_id)
        if expected_version is not None:
            query = query + sql.SQL(" AND version = %s")
            params.append(expected_version)
        query = query + sql.SQL(" RETURNING *")

        with self.get_connection() as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            logger.debug("Order %s update skipped (version %s)", order_id, expected_version)
            return None
        return Order.from_row(row)

    def assign_delivery_partner(
        self, order_id: str, partner_id: str, allowed_statuses: tuple[str, ...]
    ) -> Order | None:
        """Set the rider only while unset; a single UPDATE so concurrent accepts race safely."""
        with self.get_connection() as conn:
            row = conn.execute(
                """
                UPDATE orders
                SET delivery_partner_id = %s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE order_id = %s
                  AND delivery_partner_id IS NULL
                  AND status = ANY(%s)
                RETURNING *
                """,
                (partner_id, order_id, list(allowed_statuses)),
            ).fetchone()
        return Order.from_row(row) if row else None

    @staticmethod
    def _filter_clause(order_filter: OrderFilter) -> tuple[sql.Composable, list[Any]]:
        conditions: list[sql.Composable] = []
        params: list[Any] = []
        if order_filter.user_id is not None:
            conditions.append(sql.SQL("user_id = %s"))
            params.append(order_filter.user_id)
        if order_filter.restaurant_id is not None:
            conditions.append(sql.SQL("restaurant_id = %s"))
            params.append(order_filter.restaurant_id)
        if order_filter.delivery_partner_id is not None:
            conditions.append(sql.SQL("delivery_partner_id = %s"))
            params.append(order_filter.delivery_partner_id)
        if order_filter.statuses:
            conditions.append(sql.SQL("status = ANY(%s)"))
            params.append(list(order_filter.statuses))
        if order_filter.unassigned:
            conditions.append(sql.SQL("delivery_partner_id IS NULL"))
        if order_filter.delivered_since is not None:
            conditions.append(sql.SQL("actual_delivery_time >= %s"))
            params.append(order_filter.delivered_since)
        if order_filter.payment_intent_id is not None:
            conditions.append(sql.SQL("payment_intent_id = %s"))
            params.append(order_filter.payment_intent_id)
        if not conditions:
            return sql.SQL(""), params
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions), params

    def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        if order_filter.order_by not in ORDER_BY_CHOICES:
            raise ValueError(f"Unsupported ordering: {order_filter.order_by}")
        where, params = self._filter_clause(order_filter)
        query = sql.SQL("SELECT * FROM orders") + where
        query = query + sql.SQL(" ORDER BY " + _ORDER_BY_SQL[order_filter.order_by])
        if order_filter.limit is not None:
            query = query + sql.SQL(" LIMIT %s OFFSET %s")
            params.extend([order_filter.limit, order_filter.offset])
        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Order.from_row(row) for row in rows]

    def count_orders(self, order_filter: OrderFilter) -> int:
        where, params = self._filter_clause(order_filter)
        with self.get_connection() as conn:
            row = conn.execute(sql.SQL("SELECT COUNT(*) AS total FROM orders") + where, params).fetchone()
        return int(row["total"]) if row else 0
