"""Stored notification records."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.domain.order import utcnow


class NotificationType(str, Enum):
    """Types of notifications."""

    ORDER_UPDATE = "order_update"
    DELIVERY_UPDATE = "delivery_update"
    PAYMENT_FAILED = "payment_failed"
    REFUND_PROCESSED = "refund_processed"
    CANCELLATION = "cancellation"


@dataclass
class Notification:
    """Notification payload; only ``is_read`` changes after creation."""

    recipient_id: str
    recipient_role: str
    type: NotificationType
    title: str
    message: str
    related_order_id: str | None = None
    is_read: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipientId": self.recipient_id,
            "recipientRole": self.recipient_role,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "relatedOrderId": self.related_order_id,
            "isRead": self.is_read,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Any) -> "Notification":
        return cls(
            id=str(row["notification_id"]),
            recipient_id=str(row["recipient_id"]),
            recipient_role=row["recipient_role"],
            type=NotificationType(row["type"]),
            title=row["title"],
            message=row["message"],
            related_order_id=row.get("related_order_id"),
            is_read=bool(row.get("is_read")),
            created_at=row.get("created_at") or utcnow(),
        )
