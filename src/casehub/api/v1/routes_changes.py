from __future__ import annotations

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, WebSocketException, status

from src.casehub.domain.models.profile import Identity
from src.casehub.security import get_websocket_identity
from src.casehub.services.cases.service import case_service
from src.casehub.services.realtime.service import change_feed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/changes", tags=["changes"])


@router.websocket("/ws")
async def changes_ws(
    websocket: WebSocket,
    case_id: Optional[UUID] = Query(None),
    identity: Identity = Depends(get_websocket_identity),
) -> None:
    """Push change notifications so clients can refresh their views.

    Only events of cases the caller is a party to are delivered. Pass
    ``case_id`` to narrow the feed to one of them. The first message is an
    acknowledgement: ``{"type": "subscribed", "case_id": ...}``. Anything the
    client sends is ignored.
    """

    if case_id is not None and not case_service.is_party(identity, case_id):
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Case not found")

    def can_see(event_case_id: str) -> bool:
        return case_service.is_party(identity, UUID(event_case_id))

    await websocket.accept()
    subscriber = change_feed.subscribe({str(case_id)} if case_id else None, can_see=can_see)

    async def forward() -> None:
        while True:
            event = await subscriber.queue.get()
            await websocket.send_json({"type": "change", **event})

    sender: Optional[asyncio.Task] = None
    try:
        await websocket.send_json({"type": "subscribed", "case_id": str(case_id) if case_id else None})
        sender = asyncio.create_task(forward())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Change feed client disconnected")
    finally:
        if sender is not None:
            sender.cancel()
        change_feed.unsubscribe(subscriber)
