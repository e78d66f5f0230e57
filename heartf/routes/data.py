import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heartf.core.config import settings
from heartf.database import get_db
from heartf.dependencies.auth import require_auth, require_roles
from heartf.logic.invoicing import draft_invoice_from_booking
from heartf.logic.permissions import READ_ONLY_COLLECTIONS, can, can_write_collection, effective_matrix, sanitize_matrix
from heartf.services import data_store
from heartf.services.auth import Principal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["data"])

INVOICE_ROLES = ("admin", "ops_manager", "finance")


class StatusIn(BaseModel):
    status: str = ""


def load_permission_overrides(db: Session, org_id: int) -> dict[str, dict[str, bool]]:
    return sanitize_matrix(data_store.get_client_state(db, org_id, settings.PERMISSIONS_MATRIX_KEY))


def require_permission(db: Session, principal: Principal, action: str) -> None:
    if not can(action, principal.role, load_permission_overrides(db, principal.org_id)):
        raise data_store.PermissionDenied("Forbidden")


def require_collection_write(principal: Principal, collection: str, matrix: dict[str, dict[str, bool]]) -> None:
    if collection in READ_ONLY_COLLECTIONS:
        raise data_store.PermissionDenied("Audit log is read-only")
    if not can_write_collection(collection, principal.role, matrix):
        raise data_store.PermissionDenied("Forbidden")


@router.get("/api/data")
def data_get(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    state = data_store.load_state(db, principal.org_id)
    if not can("audit.view", principal.role, load_permission_overrides(db, principal.org_id)):
        state.pop("auditLog", None)
    return {"ok": True, "data": state}


@router.put("/api/data")
def data_replace(
    payload: dict[str, Any] = Body(default={}),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    require_permission(db, principal, "data.import")
    raw = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    state = data_store.normalize_state(raw)
    # The audit trail survives a replace; imports cannot rewrite it.
    state["auditLog"] = data_store.load_state(db, principal.org_id)["auditLog"]
    data_store.save_state(db, principal.org_id, state)
    db.commit()
    logger.info("org %s data replaced by user %s", principal.org_id, principal.user_id)
    return {"ok": True, "data": state}


@router.post("/api/data/{collection}")
def data_add(
    collection: str,
    payload: dict[str, Any] = Body(default={}),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    require_collection_write(principal, collection, load_permission_overrides(db, principal.org_id))
    state = data_store.load_state(db, principal.org_id)
    record = data_store.add_record(state, collection, payload, principal.actor)
    data_store.save_state(db, principal.org_id, state)
    db.commit()
    return {"ok": True, "record": record}


@router.patch("/api/data/{collection}/{record_id}")
def data_update(
    collection: str,
    record_id: str,
    payload: dict[str, Any] = Body(default={}),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    matrix = load_permission_overrides(db, principal.org_id)
    state = data_store.load_state(db, principal.org_id)
    if collection == "bookings" and "status" in payload:
        existing = data_store.find_record(state, collection, record_id)
        if payload["status"] != existing.get("status"):
            # Status moves go through the same checks as the dedicated endpoint.
            data_store.change_booking_status(
                state,
                record_id,
                payload["status"],
                role=principal.role,
                actor=principal.actor,
                matrix=matrix,
            )
            payload = {key: value for key, value in payload.items() if key != "status"}
            if not payload:
                data_store.save_state(db, principal.org_id, state)
                db.commit()
                return {"ok": True, "record": data_store.find_record(state, collection, record_id)}

    require_collection_write(principal, collection, matrix)
    record = data_store.update_record(state, collection, record_id, payload, principal.actor)
    data_store.save_state(db, principal.org_id, state)
    db.commit()
    return {"ok": True, "record": record}


@router.delete("/api/data/{collection}/{record_id}")
def data_delete(
    collection: str,
    record_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    require_collection_write(principal, collection, load_permission_overrides(db, principal.org_id))
    state = data_store.load_state(db, principal.org_id)
    deleted = data_store.delete_record(state, collection, record_id)
    if deleted:
        data_store.save_state(db, principal.org_id, state)
        db.commit()
    return {"ok": True, "deleted": deleted}


@router.post("/api/bookings/{booking_id}/status")
def booking_status_change(
    booking_id: str,
    payload: StatusIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    state = data_store.load_state(db, principal.org_id)
    booking = data_store.change_booking_status(
        state,
        booking_id,
        payload.status,
        role=principal.role,
        actor=principal.actor,
        matrix=load_permission_overrides(db, principal.org_id),
    )
    data_store.save_state(db, principal.org_id, state)
    db.commit()
    logger.info("booking %s -> %s by user %s", booking_id, booking.get("status"), principal.user_id)
    return {"ok": True, "booking": booking}


@router.post("/api/bookings/{booking_id}/invoice")
def booking_invoice_draft(
    booking_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(*INVOICE_ROLES)),
):
    state = data_store.load_state(db, principal.org_id)
    booking = data_store.find_record(state, "bookings", booking_id)
    invoice = data_store.add_record(state, "invoices", draft_invoice_from_booking(booking), principal.actor)
    data_store.save_state(db, principal.org_id, state)
    db.commit()
    return {"ok": True, "invoice": invoice}


@router.get("/api/permissions")
def permissions_get(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    overrides = load_permission_overrides(db, principal.org_id)
    return {"ok": True, "matrix": effective_matrix(overrides), "overrides": overrides}


@router.put("/api/permissions")
def permissions_put(
    payload: dict[str, Any] = Body(default={}),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    require_permission(db, principal, "permissions.manage")
    raw = payload.get("matrix") if isinstance(payload.get("matrix"), dict) else payload
    overrides = sanitize_matrix(raw)
    data_store.put_client_state(db, principal.org_id, settings.PERMISSIONS_MATRIX_KEY, overrides)
    db.commit()
    logger.info("org %s permission overrides updated by user %s", principal.org_id, principal.user_id)
    return {"ok": True, "matrix": effective_matrix(overrides), "overrides": overrides}
