"""Order domain types and status enums."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.core.order_math import to_money


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class OrderStatus:
    """Order lifecycle statuses."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALL = (PENDING, CONFIRMED, PREPARING, READY, OUT_FOR_DELIVERY, DELIVERED, CANCELLED)

    @classmethod
    def normalize(cls, status: str | None) -> str:
        value = str(status or "").strip().lower()
        if value not in cls.ALL:
            raise ValueError(f"Unknown order status: {status!r}")
        return value


class PaymentStatus:
    """Payment lifecycle status stored on the order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, PAID, FAILED, REFUNDED)

    @classmethod
    def initial_for_method(cls, method_type: str, *, require_confirmation: bool = False) -> str:
        # Non-cash methods are treated as pre-authorized unless the gateway must confirm.
        if require_confirmation or method_type == PaymentMethodType.CASH:
            return cls.PENDING
        return cls.PAID


class PaymentMethodType:
    CARD = "card"
    CASH = "cash"
    WALLET = "wallet"
    UPI = "upi"

    ALL = (CARD, CASH, WALLET, UPI)


class ActorRole:
    USER = "user"
    ADMIN = "admin"
    RESTAURANT = "restaurant"
    DELIVERY = "delivery"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class Actor:
    """Who is asking for a change."""

    id: str
    role: str

    @classmethod
    def system(cls, name: str = "payments") -> "Actor":
        return cls(id=name, role=ActorRole.SYSTEM)


@dataclass(frozen=True, slots=True)
class Customization:
    name: str
    option: str
    price: Decimal = Decimal("0.00")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "option": self.option, "price": float(self.price)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Customization":
        return cls(
            name=str(data.get("name", "")),
            option=str(data.get("option", "")),
            price=to_money(data.get("price", 0)),
        )


@dataclass(frozen=True, slots=True)
class OrderItem:
    """Line item snapshot taken when the order is created."""

    menu_item_id: str
    name: str
    price: Decimal
    quantity: int
    image: str = ""
    customizations: tuple[Customization, ...] = ()

    @property
    def line_total(self) -> Decimal:
        return to_money(self.price * self.quantity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "menuItemId": self.menu_item_id,
            "name": self.name,
            "price": float(self.price),
            "quantity": self.quantity,
            "image": self.image,
            "customizations": [c.to_dict() for c in self.customizations],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            menu_item_id=str(data.get("menuItemId", "")),
            name=str(data.get("name", "")),
            price=to_money(data.get("price", 0)),
            quantity=int(data.get("quantity", 1)),
            image=str(data.get("image") or ""),
            customizations=tuple(Customization.from_dict(c) for c in data.get("customizations") or ()),
        )


@dataclass(frozen=True, slots=True)
class DeliveryAddress:
    street: str
    city: str = "Unknown"
    state: str = "Unknown"
    zip_code: str = "00000"
    instructions: str | None = None

    @classmethod
    def placeholder(cls) -> "DeliveryAddress":
        return cls(street="No address provided")

    @classmethod
    def coerce(cls, value: Any) -> "DeliveryAddress":
        """Accept a structured address, a bare street string, or nothing."""
        if isinstance(value, DeliveryAddress):
            return value
        if value is None:
            return cls.placeholder()
        if isinstance(value, str):
            street = value.strip()
            return cls(street=street) if street else cls.placeholder()
        if isinstance(value, dict):
            return cls.from_dict(value)
        raise ValueError("deliveryAddress must be an object or a string")

    def to_dict(self) -> dict[str, Any]:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "instructions": self.instructions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryAddress":
        return cls(
            street=str(data.get("street") or "No address provided"),
            city=str(data.get("city") or "Unknown"),
            state=str(data.get("state") or "Unknown"),
            zip_code=str(data.get("zipCode") or data.get("zip_code") or "00000"),
            instructions=data.get("instructions"),
        )


@dataclass(frozen=True, slots=True)
class PaymentMethod:
    type: str = PaymentMethodType.CASH
    last_four: str | None = None
    status: str = "pending"

    @classmethod
    def coerce(cls, value: Any) -> "PaymentMethod":
        if isinstance(value, PaymentMethod):
            return value
        if not value:
            return cls()
        if isinstance(value, str):
            value = {"type": value}
        method_type = str(value.get("type") or PaymentMethodType.CASH).strip().lower()
        if method_type not in PaymentMethodType.ALL:
            raise ValueError(f"Invalid payment method: {method_type}")
        last_four = value.get("lastFour")
        if last_four is not None and (len(str(last_four)) != 4 or not str(last_four).isdigit()):
            raise ValueError("lastFour must be exactly 4 digits")
        return cls(type=method_type, last_four=last_four, status=str(value.get("status") or "pending"))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "lastFour": self.last_four, "status": self.status}


@dataclass(frozen=True, slots=True)
class StatusChange:
    status: str
    actor_id: str
    actor_role: str
    at: datetime
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "actorId": self.actor_id,
            "actorRole": self.actor_role,
            "at": _iso(self.at),
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusChange":
        return cls(
            status=str(data["status"]),
            actor_id=str(data.get("actorId", "")),
            actor_role=str(data.get("actorRole", "")),
            at=_parse_dt(data.get("at")) or utcnow(),
            note=data.get("note"),
        )


@dataclass(frozen=True, slots=True)
class Order:
    """Placed order.

    Items and money fields are fixed at creation. Status, payment, rider and
    review fields change only through the state machine and payment
    reconciliation, each change bumping ``version``.
    """

    id: str
    user_id: str
    restaurant_id: str
    items: tuple[OrderItem, ...]
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod
    estimated_delivery_time: datetime
    status: str = OrderStatus.PENDING
    payment_status: str = PaymentStatus.PENDING
    special_instructions: str | None = None
    delivery_partner_id: str | None = None
    payment_intent_id: str | None = None
    refund_id: str | None = None
    actual_delivery_time: datetime | None = None
    rating: int | None = None
    review: str | None = None
    status_history: tuple[StatusChange, ...] = ()
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    def evolve(self, **changes: Any) -> "Order":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "restaurantId": self.restaurant_id,
            "deliveryPartnerId": self.delivery_partner_id,
            "items": [item.to_dict() for item in self.items],
            "subtotal": float(self.subtotal),
            "deliveryFee": float(self.delivery_fee),
            "tax": float(self.tax),
            "total": float(self.total),
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method.to_dict(),
            "paymentIntentId": self.payment_intent_id,
            "refundId": self.refund_id,
            "deliveryAddress": self.delivery_address.to_dict(),
            "specialInstructions": self.special_instructions,
            "estimatedDeliveryTime": _iso(self.estimated_delivery_time),
            "actualDeliveryTime": _iso(self.actual_delivery_time),
            "rating": self.rating,
            "review": self.review,
            "statusHistory": [change.to_dict() for change in self.status_history],
            "version": self.version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Any) -> "Order":
        """Build from a dict-like database row (snake_case columns)."""
        return cls(
            id=str(row["order_id"]),
            user_id=str(row["user_id"]),
            restaurant_id=str(row["restaurant_id"]),
            items=tuple(OrderItem.from_dict(item) for item in row["items"] or ()),
            subtotal=to_money(row["subtotal"]),
            delivery_fee=to_money(row["delivery_fee"]),
            tax=to_money(row["tax"]),
            total=to_money(row["total"]),
            delivery_address=DeliveryAddress.from_dict(row["delivery_address"] or {}),
            payment_method=PaymentMethod.coerce(row["payment_method"]),
            estimated_delivery_time=_parse_dt(row["estimated_delivery_time"]) or utcnow(),
            status=row["status"],
            payment_status=row["payment_status"],
            special_instructions=row.get("special_instructions"),
            delivery_partner_id=row.get("delivery_partner_id"),
            payment_intent_id=row.get("payment_intent_id"),
            refund_id=row.get("refund_id"),
            actual_delivery_time=_parse_dt(row.get("actual_delivery_time")),
            rating=row.get("rating"),
            review=row.get("review"),
            status_history=tuple(StatusChange.from_dict(c) for c in row.get("status_history") or ()),
            version=int(row.get("version") or 1),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
            updated_at=_parse_dt(row.get("updated_at")) or utcnow(),
        )
