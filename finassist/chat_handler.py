"""
Per-connection chat handling

Reads chat frames from one WebSocket and streams the assistant's replies back
over the same socket, one reply at a time.
"""

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .assistant_gateway import AssistantGateway
from .config import WELCOME_MESSAGE
from .errors import FinAssistError
from .models import ChatFrame, chunk_frame, error_frame, system_frame, terminal_frame
from .registry import ConnectionRegistry, close_quietly

logger = logging.getLogger(__name__)

# Placed on the sink once the producer is finished, successfully or not
_DONE = object()


class ConnectionClosed(Exception):
    """A frame could not be written because the socket is gone."""


class ConnectionHandler:
    """
    Drives a single WebSocket connection from accept to close.

    Inbound messages are queued and answered strictly in order, so the
    chunks of two replies never interleave on the socket. Closing the socket
    cancels whatever reply is still in flight.
    """

    def __init__(self, websocket: WebSocket, gateway: AssistantGateway, registry: ConnectionRegistry, session):
        self.websocket = websocket
        self.gateway = gateway
        self.registry = registry
        self.session = session
        self._inbox: "asyncio.Queue[str]" = asyncio.Queue()

    async def send(self, frame: ChatFrame) -> None:
        try:
            await self.websocket.send_json(frame.to_wire())
        except (WebSocketDisconnect, RuntimeError) as e:
            raise ConnectionClosed(str(e)) from e

    async def run(self) -> None:
        await self.websocket.accept()
        await self.registry.add(self.websocket)
        worker = asyncio.create_task(self._work())

        try:
            await self.send(system_frame(WELCOME_MESSAGE))
            logger.info("Welcome message sent to client")

            while True:
                data = await self.websocket.receive_json()
                await self._accept_frame(data)

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")
        except Exception as e:
            logger.error(f"WebSocket read error: {e}")
        finally:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
            await self.registry.remove(self.websocket)
            await close_quietly(self.websocket)

    async def _accept_frame(self, data) -> None:
        try:
            frame = ChatFrame.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Rejected malformed frame: {e}")
            await self.send(error_frame("Malformed message"))
            return

        if not frame.content.strip():
            await self.send(error_frame("Message content is required"))
            return

        logger.info(f"Received message from client: {frame.content}")
        await self._inbox.put(frame.content)

    async def _work(self) -> None:
        while True:
            text = await self._inbox.get()
            try:
                await self.stream_reply(text)
            except ConnectionClosed as e:
                logger.error(f"Error sending stream chunk: {e}")
                return

    async def stream_reply(self, text: str) -> None:
        """Stream one reply, then send the terminal frame."""
        logger.info(f"Processing message: {text}")
        sink: "asyncio.Queue" = asyncio.Queue()

        async def produce():
            try:
                session = await self.session.resolve()
                await self.gateway.stream_message(session.thread_id, text, session.assistant_id, sink.put)
            except FinAssistError as e:
                logger.error(f"Error streaming message: {e}")
                await self.send(error_frame())
            except ConnectionClosed:
                raise
            except Exception as e:
                logger.error(f"Unexpected error streaming message: {e}", exc_info=True)
                await self.send(error_frame())
            finally:
                await sink.put(_DONE)

        producer = asyncio.create_task(produce())
        try:
            while True:
                chunk = await sink.get()
                if chunk is _DONE:
                    break
                await self.send(chunk_frame(chunk))
            await producer
            await self.send(terminal_frame())
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)
