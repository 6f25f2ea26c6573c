# src/huddle/api/v1/endpoints/realtime.py
"""WebSocket endpoint for real-time messaging."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from huddle.api.v1.dependencies import MessengerDep
from huddle.realtime.gateway import RealtimeGateway

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, messenger: MessengerDep) -> None:
    """Authenticate with ``?token=`` or a bearer header, then exchange events."""
    await RealtimeGateway(messenger).serve(websocket)
