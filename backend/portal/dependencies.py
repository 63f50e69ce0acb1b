"""Shared FastAPI dependencies."""

from fastapi import Request

from .audit.service import get_ip
from .notifications.ledger import NotificationLedger
from .notifications.scheduler import GenerationScheduler


def get_ledger(request: Request) -> NotificationLedger:
    """Get the notification ledger from app state."""
    return request.app.state.ledger


def get_scheduler(request: Request) -> GenerationScheduler:
    """Get the generation scheduler from app state."""
    return request.app.state.scheduler


def get_client_id(request: Request) -> str:
    """Identify the inbox client: explicit header first, caller IP otherwise."""
    client_id = request.headers.get("X-Client-Id", "").strip()
    if client_id:
        return client_id[:100]
    return get_ip(request) or "anonymous"
