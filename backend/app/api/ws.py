"""WebSocket endpoints for real-time chat communication."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from parley.realtime import gateway as realtime_gateway

router = APIRouter(prefix="/ws", tags=["ws"])


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """Authenticate the socket, then stream chat events until it closes.

    The bearer token may be passed as ``?token=`` or in the ``Authorization``
    header; otherwise the first frame must be ``{"type": "auth", "token": ...}``.
    """

    await realtime_gateway.get_chat_gateway().handle_connection(websocket)
