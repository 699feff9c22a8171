"""
Chat sessions

A session names the remote assistant and thread a conversation runs against.
Handlers receive a session explicitly instead of reading globals.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    assistant_id: str
    thread_id: str


class LazySession:
    """
    Session whose thread is created on first use.

    Used for WebSocket connections so that a client that never sends a message
    costs no remote call.
    """

    def __init__(self, gateway, assistant_id: str):
        self.gateway = gateway
        self.assistant_id = assistant_id
        self._session: Optional[ChatSession] = None
        self._lock = asyncio.Lock()

    @property
    def thread_id(self) -> Optional[str]:
        return self._session.thread_id if self._session else None

    async def resolve(self) -> ChatSession:
        async with self._lock:
            if self._session is None:
                thread = await self.gateway.create_thread()
                self._session = ChatSession(assistant_id=self.assistant_id, thread_id=thread.id)
                logger.info(f"Started conversation thread {thread.id}")
            return self._session


class SharedSession:
    """Wraps an existing session so handlers can resolve() it like a LazySession."""

    def __init__(self, session: ChatSession):
        self.session = session

    @property
    def thread_id(self) -> str:
        return self.session.thread_id

    async def resolve(self) -> ChatSession:
        return self.session
