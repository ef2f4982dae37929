"""WebSocket signaling channel for bus queries.

Inbound:  {"type": "query", "bus_numbers": [...], "request_id": "...", "whitelist": [...]}
          {"type": "cancel"}
Outbound: {"type": "response", "result": "...", "request_id": "...", "timestamp": ...}
"""

import json
import logging
import time
from typing import List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class ChannelMessage(BaseModel):
    type: str
    bus_numbers: List[str] = Field(default_factory=list)
    bus_number: Optional[str] = None
    query: Optional[str] = None
    request_id: Optional[str] = None
    whitelist: Optional[List[str]] = None

    def targets(self) -> List[str]:
        """All requested bus numbers (single ``bus_number`` accepted too)."""
        targets = [str(t) for t in self.bus_numbers]
        if self.bus_number:
            targets.append(str(self.bus_number))
        return targets


class ChannelManager:
    def __init__(self):
        self.active: List[WebSocket] = []
        self.orchestrator = None

    def bind(self, orchestrator) -> None:
        self.orchestrator = orchestrator

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active.append(websocket)
        logger.info(f"Channel client connected ({len(self.active)} active)")

    def disconnect(self, websocket: WebSocket):
        try:
            self.active.remove(websocket)
        except ValueError:
            pass

    async def send_response(self, result: str, request_id: Optional[str] = None):
        message = {
            "type": "response",
            "result": result,
            "request_id": request_id,
            "timestamp": time.time(),
        }
        for ws in list(self.active):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping channel client: {e}")
                self.disconnect(ws)

    async def handle_text(self, data: str) -> Optional[ChannelMessage]:
        """Parse one inbound frame and route it to the orchestrator."""
        try:
            message = ChannelMessage(**json.loads(data))
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"Malformed channel message: {e}")
            return None

        if message.type == "query":
            logger.info(f"📨 Query {message.request_id}: {message.targets()} ({message.query or ''})")
            if self.orchestrator is None:
                await self.send_response("Not ready: pipeline not configured", message.request_id)
                return message
            await self.orchestrator.start_session(
                message.targets(),
                request_id=message.request_id,
                whitelist=message.whitelist,
            )
        elif message.type == "cancel":
            if self.orchestrator is not None:
                await self.orchestrator.end_session("cancelled")
        else:
            logger.info(f"Ignoring channel message of type '{message.type}'")
        return message


manager = ChannelManager()


async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            await manager.handle_text(data)
    except WebSocketDisconnect:
        logger.info("Channel client disconnected")
    finally:
        manager.disconnect(websocket)
