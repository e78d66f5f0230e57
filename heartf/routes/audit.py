from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from heartf.database import get_db
from heartf.dependencies.auth import require_roles
from heartf.services.audit import DEFAULT_AUDIT_LIMIT, list_audit_entries
from heartf.services.auth import Principal

router = APIRouter(prefix="/api/audit-log", tags=["audit"])


@router.get("")
def audit_log(
    limit: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin", "ops_manager")),
):
    entries = list_audit_entries(
        db,
        org_id=principal.org_id,
        limit=limit if limit is not None else DEFAULT_AUDIT_LIMIT,
    )
    return {"ok": True, "entries": entries}
