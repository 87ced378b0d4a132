"""Alert WebSocket — pushes alerts and field reports to connected clients.

Path: /ws/alerts

Messages are {"type": "alert" | "field_snapshot" | "post_race", "data": ...}.
Clients only listen; "ping" is answered with "pong".
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from racesafe.alerts.dispatcher import AlertBroadcaster


def create_alerts_router(broadcaster: AlertBroadcaster) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws/alerts")
    async def alerts_ws(websocket: WebSocket) -> None:
        await broadcaster.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                if data.strip().lower() == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            await broadcaster.disconnect(websocket)

    return router
