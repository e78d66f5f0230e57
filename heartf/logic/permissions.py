from __future__ import annotations

from typing import Any, Mapping

from heartf.logic.booking import BOOKING_TRANSITIONS, BookingStatus, parse_status

ACTIONS = (
    "booking.view",
    "booking.update",
    "booking.status.change",
    "booking.assign",
    "audit.view",
    "permissions.manage",
    "files.view",
    "files.upload",
    "data.import",
    "data.export",
)


def _row(*granted: str) -> dict[str, bool]:
    return {action: action in granted for action in ACTIONS}


DEFAULT_PERMISSIONS: dict[str, dict[str, bool]] = {
    "admin": _row(*ACTIONS),
    "dispatcher": _row(
        "booking.view",
        "booking.update",
        "booking.status.change",
        "booking.assign",
        "audit.view",
        "files.view",
        "files.upload",
        "data.import",
        "data.export",
    ),
    "ops_manager": _row(*ACTIONS),
    "finance": _row(
        "booking.view",
        "audit.view",
        "files.view",
        "files.upload",
        "data.import",
        "data.export",
    ),
    "customer": _row("booking.view", "booking.update", "files.view", "files.upload"),
    "driver": _row("booking.view", "booking.status.change", "files.view", "files.upload"),
}

ROLE_TRANSITIONS: dict[str, dict[BookingStatus, tuple[BookingStatus, ...]]] = {
    "admin": {},
    "dispatcher": BOOKING_TRANSITIONS,
    "ops_manager": BOOKING_TRANSITIONS,
    "driver": {
        BookingStatus.CONFIRMED: (BookingStatus.IN_TRANSIT,),
        BookingStatus.IN_TRANSIT: (BookingStatus.DELIVERED,),
    },
    "customer": {
        BookingStatus.PENDING: (BookingStatus.CANCELLED,),
    },
    "finance": {},
}


def can(action: str, role: str | None, matrix: Mapping[str, Mapping[str, Any]] | None = None) -> bool:
    if not role:
        return False
    if matrix:
        stored = (matrix.get(role) or {}).get(action)
        if isinstance(stored, bool):
            return stored
    return bool(DEFAULT_PERMISSIONS.get(role, {}).get(action, False))


def can_transition_booking_status(role: str | None, from_status: Any, to_status: Any) -> bool:
    if not role:
        return False
    if role == "admin":
        return True

    source = parse_status(from_status)
    target = parse_status(to_status)
    if source is None or target is None:
        return False
    return target in ROLE_TRANSITIONS.get(role, {}).get(source, ())


def can_change_booking_status(role: str | None, matrix: Mapping[str, Mapping[str, Any]] | None = None) -> bool:
    return can("booking.status.change", role, matrix)


_OFFICE = ("admin", "ops_manager", "dispatcher")
_MONEY = ("admin", "ops_manager", "finance")

# Roles that may add/update/delete records in a data collection. Bookings go
# through booking.update instead; the audit log is written by the server only.
COLLECTION_WRITE_ROLES: dict[str, tuple[str, ...]] = {
    "vehicles": _OFFICE,
    "drivers": _OFFICE,
    "maintenance": _OFFICE,
    "customers": (*_OFFICE, "finance"),
    "leads": _OFFICE,
    "opportunities": _OFFICE,
    "leadActivities": _OFFICE,
    "opportunityActivities": _OFFICE,
    "invoices": _MONEY,
    "expenses": _MONEY,
    "leadScoringRules": ("admin", "ops_manager"),
    "users": ("admin",),
}
READ_ONLY_COLLECTIONS = ("auditLog",)


def can_write_collection(
    collection: str,
    role: str | None,
    matrix: Mapping[str, Mapping[str, Any]] | None = None,
) -> bool:
    if not role or collection in READ_ONLY_COLLECTIONS:
        return False
    if collection == "bookings":
        return can("booking.update", role, matrix)
    allowed = COLLECTION_WRITE_ROLES.get(collection)
    # Unknown collections are left to the data store to reject.
    return allowed is None or role in allowed


def sanitize_matrix(raw: Any) -> dict[str, dict[str, bool]]:
    """Keep only known roles, known actions and boolean cells from a client-supplied matrix."""
    if not isinstance(raw, Mapping):
        return {}
    cleaned: dict[str, dict[str, bool]] = {}
    for role, cells in raw.items():
        if role not in DEFAULT_PERMISSIONS or not isinstance(cells, Mapping):
            continue
        row = {action: value for action, value in cells.items() if action in ACTIONS and isinstance(value, bool)}
        if row:
            cleaned[role] = row
    return cleaned


def effective_matrix(matrix: Mapping[str, Mapping[str, Any]] | None = None) -> dict[str, dict[str, bool]]:
    return {role: {action: can(action, role, matrix) for action in ACTIONS} for role in DEFAULT_PERMISSIONS}
