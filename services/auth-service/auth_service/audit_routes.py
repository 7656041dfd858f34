from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.audit import audit
from shared.security import get_current_user
from .db import get_db
from .models import SecurityAuditLog
from .schemas import AuditLogRequest

router = APIRouter()


@router.post("/audit-log")
async def create_audit_entry(
    data: AuditLogRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    """Record a security-relevant action performed by the calling user."""
    if not data.action or not data.resource_type:
        raise HTTPException(status_code=400, detail="Missing required fields: action and resource_type")

    audit(db, SecurityAuditLog, request, user["sub"], data.action, data.resource_type, data.resource_id, data.details)
    await db.commit()
    return {"success": True}
