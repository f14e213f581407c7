import json
import logging
import uuid
from typing import List

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from duochat.core.errors import StoreFailure
from duochat.core.manager import ConnectionManager
from duochat.models.events import OutboundEvent
from duochat.models.models import RosterEntry

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketConnection:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = uuid.uuid4().hex[:12]

    async def send(self, event: OutboundEvent) -> None:
        await self.websocket.send_text(json.dumps(event.to_wire()))


def get_manager(request: Request) -> ConnectionManager:
    return request.app.state.manager


@router.get("/get-users/", response_model=List[RosterEntry])
async def get_users(request: Request):
    try:
        return await get_manager(request).roster.compute()
    except StoreFailure as e:
        raise HTTPException(status_code=503, detail=e.reason)


@router.get("/user-exists/{username}")
async def user_exists(username: str, request: Request):
    try:
        existing_user = await get_manager(request).credentials.get_user(username)
    except StoreFailure as e:
        raise HTTPException(status_code=503, detail=e.reason)
    if existing_user is None:
        return {"exists": False}
    else:
        return {"exists": True}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.manager
    await websocket.accept()
    session = manager.connect(WebSocketConnection(websocket))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            await manager.dispatch(session, data)
    except WebSocketDisconnect:
        logger.debug("Client on %s went away", session.id)
    finally:
        await manager.disconnect(session)
