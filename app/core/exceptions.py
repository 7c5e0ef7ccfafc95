"""Error kinds raised by the order pipeline.

Every error carries a human-readable message and a stable machine-readable
``kind`` so API consumers can branch on it instead of parsing prose. The
``http_status`` is only a hint for the HTTP layer.
"""
from __future__ import annotations

from typing import Any


class FoodDeliveryError(Exception):
    """Base exception for all order pipeline errors."""

    kind = "internal_error"
    http_status = 500

    def __init__(self, message: str, *args: object, **extra: Any) -> None:
        super().__init__(message, *args)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.kind, "message": self.message}
        payload.update(self.extra)
        return payload


class ConfigurationException(FoodDeliveryError):
    """Configuration errors."""

    kind = "configuration_error"


class NotFound(FoodDeliveryError):
    kind = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity)
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailed(FoodDeliveryError):
    """Input validation errors."""

    kind = "validation_failed"
    http_status = 400


class Forbidden(FoodDeliveryError):
    kind = "forbidden"
    http_status = 403


class ActorMismatch(FoodDeliveryError):
    """The acting user is not the one recorded on the order."""

    kind = "actor_mismatch"
    http_status = 403


class InvalidTransition(FoodDeliveryError):
    kind = "invalid_transition"
    http_status = 409

    def __init__(self, message: str, *, current_status: str | None = None, target: str | None = None) -> None:
        super().__init__(message, current_status=current_status, target=target)
        self.current_status = current_status
        self.target = target


class AssignmentConflict(FoodDeliveryError):
    kind = "assignment_conflict"
    http_status = 409


class ConcurrentModification(FoodDeliveryError):
    kind = "concurrent_modification"
    http_status = 409


class AlreadyReviewed(FoodDeliveryError):
    kind = "already_reviewed"
    http_status = 409


class ItemUnavailable(FoodDeliveryError):
    kind = "item_unavailable"
    http_status = 400

    def __init__(self, menu_item_id: str) -> None:
        super().__init__(f"Menu item {menu_item_id} is not available", menu_item_id=menu_item_id)
        self.menu_item_id = menu_item_id


class CartEmpty(FoodDeliveryError):
    kind = "cart_empty"
    http_status = 400

    def __init__(self, user_id: str) -> None:
        super().__init__("Cart is empty")
        self.user_id = user_id


class AlreadyPaid(FoodDeliveryError):
    kind = "already_paid"
    http_status = 409


class AlreadyRefunded(FoodDeliveryError):
    kind = "already_refunded"
    http_status = 400


class NotRefundable(FoodDeliveryError):
    kind = "not_refundable"
    http_status = 400


class PaymentNotSucceeded(FoodDeliveryError):
    kind = "payment_not_succeeded"
    http_status = 400

    def __init__(self, gateway_status: str) -> None:
        super().__init__(f"Payment not succeeded: {gateway_status}", gateway_status=gateway_status)
        self.gateway_status = gateway_status


class WebhookSignatureInvalid(FoodDeliveryError):
    kind = "webhook_signature_invalid"
    http_status = 400


class DatabaseUnavailable(FoodDeliveryError):
    kind = "database_unavailable"
    http_status = 503


class GatewayError(FoodDeliveryError):
    """Opaque upstream failure from the payment provider."""

    kind = "gateway_error"
    http_status = 502
