from __future__ import annotations

import hmac
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Security, WebSocket, WebSocketException, status
from fastapi.security import APIKeyHeader

from src.casehub.config import settings
from src.casehub.domain.models.profile import Identity
from src.casehub.services.profiles.service import profile_service

# Client applications (web portal, mobile) identify themselves with this header
# when ENABLE_API_AUTH is on. End users are identified separately by X-User-ID.
_client_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def configured_client_keys() -> List[str]:
    raw = settings.api_keys or ""
    return [key for key in (part.strip() for part in raw.split(",")) if key]


def check_client_key(api_key: Optional[str]) -> str:
    """Reject unknown client keys.

    Disabled unless ENABLE_API_AUTH is set, so local runs and tests need no key.
    """

    if not settings.enable_api_auth:
        return ""

    keys = configured_client_keys()
    if not keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Client authentication is on but API_KEYS is empty.",
        )
    if not api_key or not any(hmac.compare_digest(api_key, key) for key in keys):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown client key.")
    return api_key


async def get_api_key(api_key: Optional[str] = Security(_client_key_header)) -> str:
    """Gate every resource router on a known client key."""

    return check_client_key(api_key)


def _parse_user_id(x_user_id: Optional[str]) -> UUID:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-ID header.")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-ID header.")


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
    api_key: str = Depends(get_api_key),
) -> UUID:
    """The authenticated user's id as asserted by the identity provider.

    The gateway in front of the API authenticates the user and forwards their
    id in ``X-User-ID``. Used on its own only by registration, before the
    user has a role.
    """

    return _parse_user_id(x_user_id)


def resolve_identity(user_id: UUID) -> Identity:
    role = profile_service.get_role(user_id)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not registered.",
        )
    return Identity(user_id=user_id, role=role)


async def get_current_identity(user_id: UUID = Depends(get_current_user_id)) -> Identity:
    """Resolve the caller into an explicit :class:`Identity` (id and role)."""

    return resolve_identity(user_id)


async def get_websocket_identity(websocket: WebSocket) -> Identity:
    """Identity for websocket handshakes.

    Browsers cannot set headers on a websocket handshake, so ``api_key`` and
    ``user_id`` query parameters are accepted in place of the headers.
    Failures close the socket with a policy violation.
    """

    headers, query = websocket.headers, websocket.query_params
    try:
        check_client_key(headers.get("X-API-Key") or query.get("api_key"))
        return resolve_identity(_parse_user_id(headers.get("X-User-ID") or query.get("user_id")))
    except HTTPException as exc:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc.detail))
