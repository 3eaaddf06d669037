# app/services/workflow.py
"""
Status tables shared by the order and delivery workflows.

Order:
  pending      -> approved, rejected, cancelled
  approved     -> assigned, cancelled
  assigned     -> accepted, rejected_by_worker, cancelled
  accepted     -> picked_up, cancelled
  picked_up    -> delivered, cancelled
  rejected, cancelled, delivered -> terminal

Delivery:
  assigned   -> picked_up, failed, returned
  picked_up  -> in_transit, delivered, failed, returned
  in_transit -> delivered, failed, returned
  delivered, failed, returned -> terminal
"""
from datetime import datetime, timezone

from app.core.errors import InvalidTransition
from app.models.delivery import Delivery

ORDER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected", "cancelled"},
    "approved": {"assigned", "cancelled"},
    "assigned": {"accepted", "rejected_by_worker", "cancelled"},
    "accepted": {"picked_up", "cancelled"},
    "picked_up": {"delivered", "cancelled"},
    "rejected": set(),
    "cancelled": set(),
    "delivered": set(),
}

ORDER_TERMINAL_STATUSES = {"rejected", "cancelled", "delivered"}

# Statuses from which a (new) delivery worker can be bound
ORDER_ASSIGNABLE_STATUSES = {"approved", "assigned", "rejected_by_worker"}

# Targets a delivery worker may request on an order assigned to them
WORKER_ORDER_TARGETS = {"accepted", "rejected_by_worker", "picked_up", "delivered"}

DELIVERY_TRANSITIONS: dict[str, set[str]] = {
    "assigned": {"picked_up", "failed", "returned"},
    "picked_up": {"in_transit", "delivered", "failed", "returned"},
    "in_transit": {"delivered", "failed", "returned"},
    "delivered": set(),
    "failed": set(),
    "returned": set(),
}

DELIVERY_TERMINAL_STATUSES = {"delivered", "failed", "returned"}

_DELIVERY_TIMESTAMPS = {
    "picked_up": "picked_up_at",
    "in_transit": "in_transit_at",
    "delivered": "delivered_at",
    "returned": "returned_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_order_transition(current: str, target: str) -> None:
    if target not in ORDER_TRANSITIONS.get(current, set()):
        raise InvalidTransition("order", current, target)


def ensure_delivery_transition(current: str, target: str) -> None:
    if target not in DELIVERY_TRANSITIONS.get(current, set()):
        raise InvalidTransition("delivery", current, target)


def apply_delivery_status(delivery: Delivery, target: str, now: datetime) -> None:
    """
    Move a delivery to `target` and stamp the matching timestamp.

    Timestamps are only written the first time their status is reached.
    Callers check the transition beforehand.
    """
    delivery.status = target
    delivery.updated_at = now
    field = _DELIVERY_TIMESTAMPS.get(target)
    if field and getattr(delivery, field) is None:
        setattr(delivery, field, now)


def order_status_note(status: str, reason: str | None = None) -> str:
    """Human-readable timeline note for an order status change."""
    notes = {
        "approved": "Order approved by company",
        "rejected": f"Order rejected: {reason or 'No reason provided'}",
        "assigned": "Order assigned to delivery worker",
        "accepted": "Order accepted by delivery worker",
        "rejected_by_worker": "Order rejected by delivery worker",
        "picked_up": "Order picked up by delivery worker",
        "delivered": "Order delivered successfully",
        "cancelled": f"Order cancelled: {reason or 'No reason provided'}",
    }
    return notes.get(status, f"Status changed to {status}")
