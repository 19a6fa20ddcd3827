from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..settings import get_settings
from ..ws import broadcaster

router = APIRouter(tags=["live"])


@router.get("/_mqtt_config")
def mqtt_config():
    return {"topics": list(get_settings().mqtt_topics)}


@router.websocket("/ws")
async def live_feed(ws: WebSocket):
    await broadcaster.connect(ws)
    try:
        while True:
            # Clients only listen; inbound frames are read to notice disconnects.
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.disconnect(ws)
