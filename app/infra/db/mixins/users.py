"""
User lookups needed by notification fan-out.
"""
from __future__ import annotations


class UserMixin:
    """Mixin for user directory queries."""

    def list_user_ids_by_role(self, role: str) -> list[str]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT user_id FROM users WHERE role = %s ORDER BY user_id", (role,)
            ).fetchall()
        return [str(row["user_id"]) for row in rows]
