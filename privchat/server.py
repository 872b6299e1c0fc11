import asyncio
import logging
from typing import Any, Dict, Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from .coordinator import Coordinator
from .errors import BadRequest
from .protocol import parse_envelope

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 15
HEARTBEAT_TIMEOUT = 45
STATUS_INTERVAL = 20


class ChatServer:
    def __init__(self, coordinator: Coordinator, host: str, port: int):
        self.coordinator = coordinator
        self.host = host
        self.port = port
        self._server: Optional[Server] = None

    async def handler(self, ws: ServerConnection) -> None:
        self.coordinator.connect(ws, ws.send)
        logger.info("New connection from %s", ws.remote_address)
        try:
            async for raw in ws:
                frame = parse_envelope(raw)
                if frame is None:
                    self.coordinator.report(ws, BadRequest("Frame must be a JSON envelope with a type"))
                    continue
                await self.coordinator.handle_event(ws, frame["type"], frame.get("payload"))
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed: %s", ws.remote_address)
        finally:
            # A dropped transport is treated exactly like a logout
            await self.coordinator.disconnect(ws)

    async def start(self) -> Server:
        self._server = await serve(
            self.handler,
            self.host,
            self.port,
            ping_interval=HEARTBEAT_INTERVAL,
            ping_timeout=HEARTBEAT_TIMEOUT,
        )
        sock = next(iter(self._server.sockets), None)
        if sock is not None:
            self.port = sock.getsockname()[1]
        logger.info("Chat server listening on ws://%s:%s", self.host, self.port)
        return self._server

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    def list_status(self) -> Dict[str, Any]:
        return self.coordinator.stats()


async def main_loop(server: ChatServer, stop: Optional[asyncio.Event] = None) -> None:
    await server.start()

    async def status_printer():
        while True:
            await asyncio.sleep(STATUS_INTERVAL)
            st = server.list_status()
            logger.info(
                "Online users: %s, connections: %s, messages: %s",
                st["onlineUsers"],
                st["connections"],
                st["totalMessages"],
            )

    status_task = asyncio.create_task(status_printer())
    try:
        await (stop or asyncio.Event()).wait()
    finally:
        status_task.cancel()
        try:
            await status_task
        except asyncio.CancelledError:
            pass
        await server.stop()
