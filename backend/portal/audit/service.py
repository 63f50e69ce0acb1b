"""Audit log service."""

from fastapi import Request
from sqlalchemy.orm import Session

from .models import AuditLog


def get_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def audit(db: Session, request: Request, action: str, detail: str = "", client_id: str = "") -> None:
    """Write an audit log entry. The caller commits."""
    db.add(
        AuditLog(
            client_id=client_id or request.headers.get("X-Client-Id", ""),
            action=action,
            detail=detail,
            ip_address=get_ip(request),
        )
    )
