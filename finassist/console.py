"""
Terminal chat front end

Line-oriented chat against the assistant, for use without a browser.
"""

import asyncio
import logging
import sys
from typing import TextIO

from .assistant_gateway import AssistantGateway
from .errors import FinAssistError
from .session import ChatSession

logger = logging.getLogger(__name__)

EXIT_COMMAND = "exit"


def is_exit(line: str) -> bool:
    """Only the exact word 'exit', optionally followed by its newline, ends the chat."""
    return line in (EXIT_COMMAND, EXIT_COMMAND + "\n")


async def run_console(
    gateway: AssistantGateway,
    session: ChatSession,
    stdin: TextIO = sys.stdin,
    stdout: TextIO = sys.stdout,
) -> int:
    """
    Read lines until EOF or 'exit', sending each one to the assistant.

    Lines are forwarded exactly as read. Returns the number of turns sent.
    """
    print("Welcome to the Financial Assistant Chatbot!", file=stdout)
    print(f"Type '{EXIT_COMMAND}' to quit.", file=stdout)

    turns = 0
    while True:
        print("\nYou: ", end="", file=stdout, flush=True)
        line = await asyncio.to_thread(stdin.readline)
        if not line or is_exit(line):
            print("Goodbye!", file=stdout)
            break

        turns += 1
        try:
            reply = await gateway.send_message(session.thread_id, line, session.assistant_id)
        except FinAssistError as e:
            logger.error(f"Error sending message: {e}")
            continue
        print(f"Assistant: {reply}", file=stdout)

    return turns
