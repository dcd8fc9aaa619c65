from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, Request, status

from ..core.config import settings
from ..middlewares import principal_ctx_var


class Principal:
    """Who is acting on the request; ``name`` is written to tags and audit rows."""

    def __init__(self, *, name: str, scheme: str) -> None:
        self.name = name
        self.scheme = scheme


def _set_principal(request: Request, principal: Principal) -> Principal:
    principal_ctx_var.set(principal.name)
    request.state.principal = principal.name
    return principal


async def require_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_actor: str | None = Header(default=None, alias="X-Actor"),
) -> Principal:
    """Guard for every ``/api/v1`` router.

    With no ``API_KEY`` configured the API is open and callers act as
    ``anonymous`` unless they name themselves with ``X-Actor``.
    """

    actor = (x_actor or "").strip()
    api_key = settings.API_KEY
    if not api_key:
        return _set_principal(request, Principal(name=actor or "anonymous", scheme="open"))

    provided = (x_api_key or "").strip()
    if not provided:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization required")
    if not hmac.compare_digest(api_key, provided):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    return _set_principal(request, Principal(name=actor or "api-key", scheme="api_key"))
