"""
Command line entry point.

    python -m finassist serve [--host HOST] [--port PORT] [--reload]
    python -m finassist chat [--index]
"""

import argparse
import asyncio
import logging
import sys

from dotenv import find_dotenv, load_dotenv

from .assistant_gateway import AssistantGateway
from .config import load_settings
from .console import run_console
from .errors import ConfigError, FinAssistError
from .session import ChatSession

logger = logging.getLogger("finassist")


async def _chat(build_index: bool) -> int:
    settings = load_settings()
    gateway = AssistantGateway(settings)
    try:
        assistant = await gateway.create_or_get_assistant(settings.assistant_id)
        if build_index:
            index_id = await gateway.create_document_index()
            assistant = await gateway.attach_index_to_assistant(assistant.id, index_id)
        thread = await gateway.create_thread()

        logger.info("Ready to chat with the assistant")
        await run_console(gateway, ChatSession(assistant_id=assistant.id, thread_id=thread.id))
    finally:
        await gateway.close()
    return 0


def _serve(host, port, reload: bool) -> int:
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "finassist.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="info",
    )
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="finassist", description="Financial Assistant chat relay")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP/WebSocket server")
    serve.add_argument("--host", help="Defaults to FINASSIST_HOST")
    serve.add_argument("--port", type=int, help="Defaults to FINASSIST_PORT")
    serve.add_argument("--reload", action="store_true")

    chat = commands.add_parser("chat", help="Chat with the assistant in the terminal")
    chat.add_argument("--index", action="store_true", help="Upload the documents folder before chatting")

    args = parser.parse_args(argv)

    # .env in the working directory, not beside the installed package
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        if args.command == "serve":
            return _serve(args.host, args.port, args.reload)
        return asyncio.run(_chat(args.index))
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 2
    except FinAssistError as e:
        logger.error(f"Startup failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
