"""
Notification records storage.
"""
from __future__ import annotations

from app.domain.notification import Notification


class NotificationMixin:
    """Mixin for stored notification records."""

    def create_notification(self, notification: Notification) -> Notification:
        with self.get_connection() as conn:
            row = conn.execute(
                """
                INSERT INTO notifications (
                    notification_id, recipient_id, recipient_role, type, title, message,
                    related_order_id, is_read, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    notification.id,
                    notification.recipient_id,
                    notification.recipient_role,
                    notification.type.value,
                    notification.title,
                    notification.message,
                    notification.related_order_id,
                    notification.is_read,
                    notification.created_at,
                ),
            ).fetchone()
        return Notification.from_row(row)

    def list_notifications(
        self, recipient_id: str, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        query = "SELECT * FROM notifications WHERE recipient_id = %s"
        if unread_only:
            query += " AND is_read = FALSE"
        query += " ORDER BY created_at DESC LIMIT %s"
        with self.get_connection() as conn:
            rows = conn.execute(query, (recipient_id, limit)).fetchall()
        return [Notification.from_row(row) for row in rows]

    def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE notifications SET is_read = TRUE
                WHERE notification_id = %s AND recipient_id = %s
                """,
                (notification_id, recipient_id),
            )
            return cursor.rowcount > 0

    def mark_all_read(self, recipient_id: str) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = TRUE WHERE recipient_id = %s AND is_read = FALSE",
                (recipient_id,),
            )
            return cursor.rowcount

    def unread_count(self, recipient_id: str) -> int:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS unread FROM notifications WHERE recipient_id = %s AND is_read = FALSE",
                (recipient_id,),
            ).fetchone()
        return int(row["unread"]) if row else 0
