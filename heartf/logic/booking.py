from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from heartf.utils.clock import utcnow


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CLOSED = "closed"
    CANCELLED = "cancelled"


BOOKING_TRANSITIONS: dict[BookingStatus, tuple[BookingStatus, ...]] = {
    BookingStatus.DRAFT: (BookingStatus.SCHEDULED, BookingStatus.CANCELLED),
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.SCHEDULED: (BookingStatus.DISPATCHED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (BookingStatus.DISPATCHED, BookingStatus.IN_TRANSIT, BookingStatus.CANCELLED),
    BookingStatus.DISPATCHED: (BookingStatus.IN_TRANSIT, BookingStatus.CANCELLED),
    BookingStatus.IN_TRANSIT: (BookingStatus.DELIVERED, BookingStatus.CANCELLED),
    BookingStatus.DELIVERED: (BookingStatus.CLOSED,),
    BookingStatus.CLOSED: (),
    BookingStatus.CANCELLED: (),
}

# Lifecycle timestamp stamped when a booking enters the status.
LIFECYCLE_TIMESTAMPS: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.DISPATCHED: "started_at",
    BookingStatus.IN_TRANSIT: "started_at",
    BookingStatus.DELIVERED: "delivered_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


def parse_status(value: Any) -> BookingStatus | None:
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(str(value or "").strip().lower())
    except ValueError:
        return None


def allowed_next_statuses(current: Any) -> tuple[BookingStatus, ...]:
    status = parse_status(current)
    if status is None:
        return ()
    return BOOKING_TRANSITIONS.get(status, ())


def can_transition(from_status: Any, to_status: Any) -> bool:
    target = parse_status(to_status)
    return target is not None and target in allowed_next_statuses(from_status)


def _event_id() -> str:
    return uuid.uuid4().hex


def _actor_ref(actor: dict[str, Any] | None) -> dict[str, Any] | None:
    if not actor:
        return None
    return {"id": actor.get("id"), "role": actor.get("role")}


def apply_status_change(
    existing: dict[str, Any],
    updated: dict[str, Any],
    actor: dict[str, Any] | None = None,
) -> tuple[dict[str, Any], dict[str, Any] | None]:
    """
    Merge `updated` over `existing`. When the status moves, append a
    status_history event, stamp lifecycle timestamps, and return the audit
    entry describing the change (None otherwise).
    """
    now_iso = utcnow().isoformat()
    merged = {**existing, **updated, "updated_at": now_iso}

    previous_status = existing.get("status")
    next_status = merged.get("status")
    if previous_status == next_status:
        merged["status_history"] = list(existing.get("status_history") or [])
        return merged, None

    merged["status_history"] = [
        *(existing.get("status_history") or []),
        {
            "id": _event_id(),
            "at": now_iso,
            "from": previous_status,
            "to": next_status,
            "by": _actor_ref(actor),
        },
    ]

    status = parse_status(next_status)
    stamp_field = LIFECYCLE_TIMESTAMPS.get(status) if status else None
    if stamp_field:
        merged[stamp_field] = now_iso

    audit_entry = {
        "id": _event_id(),
        "at": now_iso,
        "actor": _actor_ref(actor),
        "action": "booking.status.change",
        "entity": {"type": "booking", "id": existing.get("id"), "ref": existing.get("booking_number")},
        "meta": {"from": previous_status, "to": next_status},
    }
    return merged, audit_entry


def initial_status_event(booking: dict[str, Any], actor: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "id": _event_id(),
        "at": utcnow().isoformat(),
        "from": None,
        "to": booking.get("status") or BookingStatus.DRAFT.value,
        "by": _actor_ref(actor),
    }
