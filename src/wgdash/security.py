from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from wgdash.settings import get_settings


def _extract_token(x_api_token: str | None, authorization: str | None) -> str | None:
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            token = value.strip()
            return token or None
    if x_api_token:
        token = x_api_token.strip()
        return token or None
    return None


async def require_api_token(
    x_api_token: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> None:
    """
    Accepts either:
    - `x-api-token: <API_INTERNAL_TOKEN>`
    - `Authorization: Bearer <API_INTERNAL_TOKEN>`
    """
    expected = get_settings().api_internal_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API token is not configured")

    token = _extract_token(x_api_token, authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API token")
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API token")
