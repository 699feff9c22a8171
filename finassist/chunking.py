"""
Reply chunking

Splits a finished reply into paced chunks for the typing effect in the UI.
The remote run is already complete by the time chunking happens.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable

Sink = Callable[[str], Awaitable[None]]


class Chunker:
    """Fixed-size chunking with an optional delay after each chunk."""

    def __init__(self, size: int = 1, delay: float = 0.05):
        if size < 1:
            raise ValueError("chunk size must be at least 1")
        if delay < 0:
            raise ValueError("chunk delay cannot be negative")
        self.size = size
        self.delay = delay

    def split(self, text: str) -> list:
        return [text[i:i + self.size] for i in range(0, len(text), self.size)]

    async def chunks(self, text: str) -> AsyncIterator[str]:
        for chunk in self.split(text):
            yield chunk
            if self.delay:
                await asyncio.sleep(self.delay)

    async def emit(self, text: str, sink: Sink) -> int:
        """Push text into sink chunk by chunk; returns the number of chunks sent."""
        count = 0
        async for chunk in self.chunks(text):
            await sink(chunk)
            count += 1
        return count
