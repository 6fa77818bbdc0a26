import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from plantalerts.core.security import operator_from_token
from plantalerts.schemas.notification import PushEvent
from plantalerts.services.push_channel import Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

# "try again later": the client should reconnect and reload through pagination
CLOSE_TRY_AGAIN = 1013


class ConnectionManager:
    """Tracks open push sockets per operator."""

    def __init__(self):
        # operator_id -> list of WebSocket connections
        self.active: dict[str, list[WebSocket]] = {}

    async def connect(self, operator_id: str, ws: WebSocket):
        await ws.accept()
        self.active.setdefault(operator_id, []).append(ws)

    def disconnect(self, operator_id: str, ws: WebSocket):
        if operator_id in self.active:
            self.active[operator_id] = [c for c in self.active[operator_id] if c is not ws]
            if not self.active[operator_id]:
                del self.active[operator_id]

    @property
    def connection_count(self) -> int:
        return sum(len(conns) for conns in self.active.values())


manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    # Auth via query param: ws://host/v1/ws?token=<jwt>
    operator_id = operator_from_token(ws.query_params.get("token"))
    if not operator_id:
        await ws.close(code=4001, reason="Invalid token")
        return

    # subscribe before accepting so nothing broadcast after the handshake is missed
    subscription = ws.app.state.push_channel.subscribe()
    try:
        await manager.connect(operator_id, ws)
    except Exception:
        subscription.close()
        raise
    forward = asyncio.create_task(_forward(ws, subscription))
    receive = asyncio.create_task(_receive(ws))
    try:
        done, _ = await asyncio.wait({forward, receive}, return_when=asyncio.FIRST_COMPLETED)
        if forward in done and not forward.cancelled() and forward.exception() is None:
            # the channel dropped this subscriber
            await ws.close(code=CLOSE_TRY_AGAIN)
    finally:
        subscription.close()
        for task in (forward, receive):
            task.cancel()
        await asyncio.gather(forward, receive, return_exceptions=True)
        manager.disconnect(operator_id, ws)


async def _forward(ws: WebSocket, subscription: Subscription):
    async for notification in subscription:
        await ws.send_json(PushEvent(data=notification).model_dump(mode="json"))


async def _receive(ws: WebSocket):
    try:
        while True:
            # clients may send pings; nothing else is expected
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
