"""
Connection Registry

Tracks open WebSocket connections and fans broadcast frames out to them.
"""

import asyncio
import logging
from typing import Optional, Set

from fastapi import WebSocket

from .models import ChatFrame

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Set of open connections plus a broadcast queue.

    The lock guards set mutations only; it is never held while writing to a
    socket.
    """

    def __init__(self):
        self._clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._queue: "asyncio.Queue[ChatFrame]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def count(self) -> int:
        return len(self._clients)

    def __contains__(self, websocket: WebSocket) -> bool:
        return websocket in self._clients

    async def add(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.add(websocket)
        logger.info(f"Client connected ({self.count} open)")

    async def remove(self, websocket: WebSocket) -> bool:
        """Drop a connection; returns False if it was already gone."""
        async with self._lock:
            if websocket not in self._clients:
                return False
            self._clients.discard(websocket)
        logger.info(f"Client disconnected ({self.count} open)")
        return True

    async def snapshot(self) -> list:
        async with self._lock:
            return list(self._clients)

    async def broadcast(self, frame: ChatFrame) -> int:
        """
        Write a frame to every open connection.

        Connections whose write fails are removed and closed; the rest still
        receive the frame. Returns the number of successful writes.
        """
        delivered = 0
        payload = frame.to_wire()
        for websocket in await self.snapshot():
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"WebSocket write error: {e}")
                if await self.remove(websocket):
                    await close_quietly(websocket)
        return delivered

    async def publish(self, frame: ChatFrame) -> None:
        """Queue a frame for the broadcast loop."""
        await self._queue.put(frame)

    async def run(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self.broadcast(frame)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            logger.info("Message broadcast handler started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


async def close_quietly(websocket: WebSocket) -> None:
    try:
        await websocket.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing WebSocket: {e}")
