from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heartf.database import get_db
from heartf.dependencies.auth import optional_auth, require_roles
from heartf.services.auth import Principal
from heartf.services.lead_finder import IMPORT_ROLES, draft_outreach_email, import_results, search_prospects

router = APIRouter(prefix="/api/lead-finder", tags=["lead-finder"])


class ImportIn(BaseModel):
    searchId: int | None = None
    resultIds: list[int] = []


@router.post("/search")
def lead_finder_search(
    payload: dict[str, Any] = Body(default={}),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(optional_auth),
):
    result = search_prospects(db, principal, payload)
    if principal is not None:
        db.commit()
    return {"ok": True, **result}


@router.post("/import")
def lead_finder_import(
    payload: ImportIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(*IMPORT_ROLES)),
):
    result = import_results(db, principal, payload.searchId, payload.resultIds)
    db.commit()
    return {"ok": True, **result}


@router.post("/draft-email")
def lead_finder_draft_email(payload: dict[str, Any] = Body(default={})):
    return {"ok": True, "email": draft_outreach_email(payload)}
