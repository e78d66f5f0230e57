"""
Org-wide application data, stored as one JSON document per org.

This is the server side of the dashboard's data context: flat record lists
(vehicles, bookings, leads, ...) with add/update/delete reducers. Bookings,
invoices and leads get their business rules applied on the way in.
"""
from __future__ import annotations

import copy
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from heartf.core.config import settings
from heartf.logic.booking import apply_status_change, can_transition, initial_status_event, parse_status
from heartf.logic.invoicing import apply_invoice_update, prepare_new_invoice
from heartf.logic.lead_scoring import calculate_lead_score
from heartf.logic.permissions import can_change_booking_status, can_transition_booking_status
from heartf.models.client_state import ClientState
from heartf.utils.clock import utcnow

logger = logging.getLogger(__name__)

COLLECTIONS = (
    "vehicles",
    "bookings",
    "leads",
    "opportunities",
    "invoices",
    "expenses",
    "drivers",
    "users",
    "customers",
    "maintenance",
    "leadActivities",
    "opportunityActivities",
    "leadScoringRules",
    "auditLog",
)


class DataStoreError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownCollectionError(DataStoreError):
    status_code = 404


class RecordNotFoundError(DataStoreError):
    status_code = 404


class PermissionDenied(DataStoreError):
    status_code = 403


def empty_state() -> dict[str, list[dict[str, Any]]]:
    return {name: [] for name in COLLECTIONS}


def normalize_state(raw: Any) -> dict[str, list[dict[str, Any]]]:
    state = empty_state()
    if not isinstance(raw, dict):
        return state
    for name in COLLECTIONS:
        records = raw.get(name)
        if isinstance(records, list):
            state[name] = [record for record in records if isinstance(record, dict)]
    return state


def get_client_state(db: Session, org_id: int, state_key: str) -> Any:
    row = (
        db.query(ClientState)
        .filter(ClientState.org_id == org_id, ClientState.state_key == state_key)
        .first()
    )
    return copy.deepcopy(row.payload) if row else None


def put_client_state(db: Session, org_id: int, state_key: str, payload: Any) -> None:
    row = (
        db.query(ClientState)
        .filter(ClientState.org_id == org_id, ClientState.state_key == state_key)
        .first()
    )
    if row is None:
        row = ClientState(org_id=org_id, state_key=state_key, payload=copy.deepcopy(payload))
        db.add(row)
        return
    row.payload = copy.deepcopy(payload)
    row.updated_at = utcnow()
    flag_modified(row, "payload")


def load_state(db: Session, org_id: int) -> dict[str, list[dict[str, Any]]]:
    return normalize_state(get_client_state(db, org_id, settings.GLOBAL_DATA_KEY))


def save_state(db: Session, org_id: int, state: dict[str, Any]) -> None:
    put_client_state(db, org_id, settings.GLOBAL_DATA_KEY, normalize_state(state))


def _require_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise UnknownCollectionError(f"Unknown collection: {collection}")


def _same_id(record: dict[str, Any], record_id: Any) -> bool:
    return str(record.get("id")) == str(record_id)


def _next_id(records: list[dict[str, Any]]) -> int:
    numeric_ids = []
    for record in records:
        try:
            numeric_ids.append(int(record.get("id")))
        except (TypeError, ValueError):
            continue
    return max(numeric_ids) + 1 if numeric_ids else 1


def append_audit(state: dict[str, Any], entry: dict[str, Any]) -> dict[str, Any]:
    full = {**entry, "id": uuid.uuid4().hex, "at": utcnow().isoformat()}
    cap = max(int(settings.AUDIT_LOG_CAP or 500), 1)
    state["auditLog"] = [full, *(state.get("auditLog") or [])][:cap]
    return full


def _score_lead(state: dict[str, Any], lead: dict[str, Any]) -> dict[str, Any]:
    lead["lead_score"] = calculate_lead_score(lead, state.get("leadScoringRules") or [])
    return lead


def rescore_leads(state: dict[str, Any]) -> None:
    state["leads"] = [_score_lead(state, dict(lead)) for lead in state.get("leads") or []]


def find_record(state: dict[str, Any], collection: str, record_id: Any) -> dict[str, Any]:
    _require_collection(collection)
    for record in state.get(collection) or []:
        if _same_id(record, record_id):
            return record
    raise RecordNotFoundError(f"{collection} record {record_id} not found")


def add_record(
    state: dict[str, Any],
    collection: str,
    record: dict[str, Any],
    actor: dict[str, Any] | None = None,
) -> dict[str, Any]:
    _require_collection(collection)
    if collection == "auditLog":
        return append_audit(state, record)

    now_iso = utcnow().isoformat()
    records = state.get(collection) or []
    full = {**record, "id": _next_id(records), "created_at": now_iso, "updated_at": now_iso}

    if collection == "bookings":
        full["status_history"] = [initial_status_event(full, actor)]
    elif collection == "invoices":
        full = {**prepare_new_invoice(full), "created_at": now_iso, "updated_at": now_iso}
    elif collection == "leads":
        full = _score_lead(state, full)

    state[collection] = [full, *records]

    if collection == "bookings":
        append_audit(
            state,
            {
                "actor": actor,
                "action": "booking.create",
                "entity": {"type": "booking", "id": full["id"], "ref": full.get("booking_number")},
                "meta": {"booking_number": full.get("booking_number"), "status": full.get("status")},
            },
        )
    elif collection == "leadScoringRules":
        rescore_leads(state)

    return full


def update_record(
    state: dict[str, Any],
    collection: str,
    record_id: Any,
    changes: dict[str, Any],
    actor: dict[str, Any] | None = None,
) -> dict[str, Any]:
    existing = find_record(state, collection, record_id)
    changes = {key: value for key, value in changes.items() if key not in ("id", "created_at")}

    if collection == "bookings":
        merged, audit_entry = apply_status_change(existing, changes, actor)
        if audit_entry:
            append_audit(state, audit_entry)
    elif collection == "invoices":
        merged = apply_invoice_update(existing, changes)
    else:
        merged = {**existing, **changes, "updated_at": utcnow().isoformat()}
        if collection == "leads":
            merged = _score_lead(state, merged)

    state[collection] = [merged if _same_id(record, record_id) else record for record in state[collection]]

    if collection == "leadScoringRules":
        rescore_leads(state)
    return merged


def delete_record(state: dict[str, Any], collection: str, record_id: Any) -> bool:
    _require_collection(collection)
    records = state.get(collection) or []
    remaining = [record for record in records if not _same_id(record, record_id)]
    state[collection] = remaining

    if collection == "leadScoringRules":
        rescore_leads(state)
    return len(remaining) != len(records)


class BookingTransitionError(DataStoreError):
    status_code = 409


def change_booking_status(
    state: dict[str, Any],
    booking_id: Any,
    new_status: Any,
    *,
    role: str | None,
    actor: dict[str, Any] | None = None,
    matrix: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Move a booking to new_status. PermissionDenied (403) when the role may not
    change statuses or may not make this move; BookingTransitionError (409)
    when the status table forbids it.
    """
    booking = find_record(state, "bookings", booking_id)
    target = parse_status(new_status)
    if target is None:
        raise DataStoreError(f"Invalid status: {new_status}")

    current = booking.get("status")
    if not can_change_booking_status(role, matrix):
        raise PermissionDenied("Forbidden")
    if not can_transition_booking_status(role, current, target):
        raise PermissionDenied(f"Role {role} cannot move booking from {current} to {target.value}")
    if not can_transition(current, target):
        raise BookingTransitionError(f"Invalid transition: {current} -> {target.value}")

    return update_record(state, "bookings", booking_id, {"status": target.value}, actor)
