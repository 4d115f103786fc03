import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

import websockets

from .customised_types import ClientEventType
from .errors import InvalidRequest, RelayError
from .protocol import parse_envelope
from .service import RelayService
from .sessions import Session

HEARTBEAT_INTERVAL = 15
HEARTBEAT_TIMEOUT = 45

logger = logging.getLogger(__name__)


class RelayServer:
    """WebSocket front end. One reader loop and one writer task per connection."""

    def __init__(self, service: RelayService):
        self.service = service

    async def _writer(self, session: Session, ws) -> None:
        while True:
            raw = await session.outbox.get()
            if raw is None:
                return
            try:
                await ws.send(raw)
            except websockets.exceptions.ConnectionClosed:
                logger.warning("Dropping frames for closed connection %s", session.connection_id)
                return

    async def handler(self, ws, path: Optional[str] = None) -> None:
        connection_id = str(uuid.uuid4())
        session = self.service.connect(connection_id)
        writer = asyncio.create_task(self._writer(session, ws))
        logger.info("Connection %s opened", connection_id)
        try:
            async for raw in ws:
                frame = parse_envelope(raw)
                if not frame:
                    logger.warning("Ignoring malformed frame on %s", connection_id)
                    continue
                self.handle_frame(connection_id, frame)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.service.disconnect(connection_id)
            try:
                await asyncio.wait_for(writer, timeout=HEARTBEAT_INTERVAL)
            except asyncio.TimeoutError:
                writer.cancel()
            logger.info("Connection %s closed", connection_id)

    def handle_frame(self, connection_id: str, frame: Dict[str, Any]) -> None:
        msg_type = frame.get("type")
        payload = frame.get("payload") or {}
        try:
            if msg_type == ClientEventType.AUTH:
                self.service.authenticate_connection(connection_id, payload.get("token"))
            elif msg_type == ClientEventType.SEND_MESSAGE:
                # The token is resolved again on every send
                self.service.send_message(
                    payload.get("token"),
                    payload.get("channelType"),
                    payload.get("channelId"),
                    payload.get("text"),
                    payload.get("imageUrl"),
                )
            elif msg_type == ClientEventType.UPDATE_PROFILE:
                self.service.update_profile(payload.get("token"), payload)
            else:
                raise InvalidRequest(f"Unhandled type {msg_type}")
        except RelayError as e:
            logger.info("%s on %s: %s", e.code, connection_id, e.detail)
            self.service.engine.send_error(connection_id, e)

    async def serve(self, host: str, port: int, stop: asyncio.Event) -> None:
        async with websockets.serve(
            self.handler,
            host,
            port,
            ping_interval=HEARTBEAT_INTERVAL,
            ping_timeout=HEARTBEAT_TIMEOUT,
        ):
            logger.info("Relay listening on ws://%s:%s", host, port)
            await stop.wait()
