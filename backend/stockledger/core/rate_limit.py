"""Shared rate limiter instance for use across route files."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from stockledger.core.config import settings


def get_terminal_or_ip(request: Request) -> str:
    """Rate limit per POS terminal when it identifies itself, else by IP."""
    terminal = request.headers.get("X-Terminal-Id", "").strip()
    if terminal:
        return f"terminal:{terminal}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_terminal_or_ip,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limit_enabled,
)
