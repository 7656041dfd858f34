"""
Security audit trail. Each service keeps a security_audit_log table in its
own database, declared by mixing SecurityAuditColumns into its Base.
"""
import logging
from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import JSON, Column, DateTime, Integer, String

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class SecurityAuditColumns:
    __tablename__ = "security_audit_log"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def audit(
    db,
    model,
    request: Request,
    user_id: str,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    details: dict | None = None,
):
    """Stage an audit row on db; it commits with the caller's transaction."""
    entry = model(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details=details or {},
    )
    db.add(entry)
    logger.info("Audit %s on %s/%s by %s", action, resource_type, resource_id, user_id)
    return entry
