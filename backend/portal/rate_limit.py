"""Rate limiting singleton using slowapi."""

from fastapi import Request
from slowapi import Limiter

from .audit.service import get_ip


def _client_key(request: Request) -> str:
    """Limit per inbox client, falling back to the caller's IP behind nginx."""
    client_id = request.headers.get("X-Client-Id", "").strip()
    if client_id:
        return f"client:{client_id}"
    return get_ip(request) or "unknown"


limiter = Limiter(key_func=_client_key)
