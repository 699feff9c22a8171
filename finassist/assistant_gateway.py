"""
Assistant Gateway

Manages communication with the hosted OpenAI Assistants API: assistants,
threads, runs and the vector store used for file search.
"""

import asyncio
import logging
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Iterable, Optional

import httpx
import openai
from openai import AsyncOpenAI

from .chunking import Chunker, Sink
from .config import Settings, list_document_files, read_prompt
from .errors import FileIOError, FinAssistError, NoResponseError, RemoteAPIError, RunTimeoutError

logger = logging.getLogger(__name__)

# Run statuses after which a run never changes again
TERMINAL_STATUSES = ("completed", "failed", "cancelled", "expired", "incomplete")


def _remote_error(action: str, exc: Exception) -> RemoteAPIError:
    return RemoteAPIError(
        f"error {action}",
        detail=str(exc),
        status_code=getattr(exc, "status_code", None),
    )


def _describe_run_error(run) -> str:
    last_error = getattr(run, "last_error", None)
    if last_error is None:
        return f"run ended with status {run.status}"
    return f"{last_error.code}: {last_error.message}"


def _first_text(message) -> Optional[str]:
    for block in message.content:
        if block.type == "text":
            return block.text.value
    return None


async def _settled(task: asyncio.Future):
    """Wait for task, returning None if it failed with a known error."""
    try:
        return await asyncio.shield(task)
    except FinAssistError as e:
        logger.warning(f"Run creation failed after cancellation: {e}")
        return None


class AssistantGateway:
    """
    Async client for the remote assistant service.

    Every remote failure surfaces as RemoteAPIError; nothing is retried here
    beyond what the SDK does itself.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.chunker = Chunker(size=settings.stream_chunk_size, delay=settings.stream_delay)

        if client is None:
            self.http_client = httpx.AsyncClient(timeout=settings.request_timeout)
            client = AsyncOpenAI(api_key=settings.openai_api_key, http_client=self.http_client)
        else:
            self.http_client = None
        self.client = client

        logger.info("Assistant gateway initialized.")

    # ------------------------------------------------------------------
    # Assistants
    # ------------------------------------------------------------------

    async def create_or_get_assistant(self, assistant_id: str):
        """
        Return the remote assistant with this id, creating one if none exists.

        Raises:
            RemoteAPIError: If listing or creating fails
        """
        try:
            async for assistant in self.client.beta.assistants.list(order="desc"):
                if assistant.id == assistant_id:
                    logger.info(f"Found existing assistant: {assistant.id}")
                    return assistant
        except openai.APIError as e:
            raise _remote_error("listing assistants", e)

        instructions = read_prompt(self.settings.assistant_prompt_file)
        try:
            assistant = await self.client.beta.assistants.create(
                name=self.settings.assistant_name,
                instructions=instructions,
                tools=[{"type": "file_search"}],
                model=self.settings.model_name,
            )
        except openai.APIError as e:
            raise _remote_error("creating assistant", e)

        logger.info(f"Created new assistant: {assistant.id}")
        return assistant

    async def attach_index_to_assistant(self, assistant_id: str, index_id: str):
        """Point the assistant's file search tool at a vector store."""
        logger.info(f"Adding the vector store Id: {index_id} to the assistant Id: {assistant_id}")
        try:
            return await self.client.beta.assistants.update(
                assistant_id,
                tool_resources={"file_search": {"vector_store_ids": [index_id]}},
            )
        except openai.APIError as e:
            raise _remote_error("updating assistant", e)

    # ------------------------------------------------------------------
    # Document index
    # ------------------------------------------------------------------

    async def create_document_index(self, paths: Optional[Iterable[Path]] = None) -> str:
        """
        Create a vector store and upload documents into it.

        Args:
            paths: Files to upload; defaults to everything under the documents folder

        Returns:
            Id of the new vector store

        Raises:
            RemoteAPIError: If the store cannot be created or indexing fails
            FileIOError: If a document cannot be opened
        """
        if paths is None:
            paths = list_document_files(self.settings.documents_dir)
        paths = list(paths)

        try:
            vector_store = await self.client.vector_stores.create(
                name=self.settings.index_name,
                expires_after={"anchor": "last_active_at", "days": self.settings.index_expiry_days},
            )
        except openai.APIError as e:
            raise _remote_error("creating vector store", e)

        if not paths:
            logger.warning(f"No documents to upload; vector store {vector_store.id} is empty")
            return vector_store.id

        with ExitStack() as stack:
            files = []
            for path in paths:
                try:
                    files.append(stack.enter_context(open(path, "rb")))
                except OSError as e:
                    raise FileIOError(path, str(e))

            try:
                batch = await self.client.vector_stores.file_batches.upload_and_poll(
                    vector_store_id=vector_store.id,
                    files=files,
                    poll_interval_ms=int(self.settings.poll_interval * 1000),
                )
            except openai.APIError as e:
                raise _remote_error("uploading files", e)

        if batch.status != "completed":
            raise RemoteAPIError(
                "error uploading files",
                detail=f"file batch {batch.id} ended with status {batch.status}",
            )

        logger.info(f"Created vector store {vector_store.id} with {len(files)} files (batch status: {batch.status})")
        return vector_store.id

    # ------------------------------------------------------------------
    # Threads and runs
    # ------------------------------------------------------------------

    async def create_thread(self):
        """Create a new empty conversation thread."""
        try:
            thread = await self.client.beta.threads.create()
        except openai.APIError as e:
            raise _remote_error("creating thread", e)
        logger.info(f"Thread created: {thread.id}")
        return thread

    async def _add_user_message(self, thread_id: str, text: str) -> None:
        try:
            message = await self.client.beta.threads.messages.create(thread_id, role="user", content=text)
        except openai.APIError as e:
            raise _remote_error("creating message", e)
        logger.debug(f"Created thread message {message.id}")

    async def _start_run(self, thread_id: str, assistant_id: str):
        """
        Create a run on the thread.

        The create request is not abandoned when the caller is cancelled: once
        it lands, the new run is cancelled remotely before the cancellation
        propagates.
        """
        creating = asyncio.ensure_future(self._create_run(thread_id, assistant_id))
        try:
            return await asyncio.shield(creating)
        except asyncio.CancelledError:
            run = await _settled(creating)
            if run is not None:
                await asyncio.shield(self._cancel_run(thread_id, run.id))
            raise

    async def _create_run(self, thread_id: str, assistant_id: str):
        instructions = read_prompt(self.settings.thread_prompt_file)
        kwargs = {"thread_id": thread_id, "assistant_id": assistant_id}
        if instructions:
            kwargs["additional_instructions"] = instructions
        try:
            return await self.client.beta.threads.runs.create(**kwargs)
        except openai.APIError as e:
            raise _remote_error("creating run", e)

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            await self.client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
            logger.info(f"Cancelled run {run_id}")
        except openai.APIError as e:
            logger.warning(f"Could not cancel run {run_id}: {e}")

    async def wait_for_run(self, thread_id: str, run):
        """
        Poll a run until it reaches a terminal status.

        Raises:
            RemoteAPIError: If polling fails
            RunTimeoutError: If the run outlives settings.run_timeout
        """
        deadline = None
        if self.settings.run_timeout is not None:
            deadline = time.monotonic() + self.settings.run_timeout

        try:
            while run.status not in TERMINAL_STATUSES:
                if deadline is not None and time.monotonic() >= deadline:
                    await self._cancel_run(thread_id, run.id)
                    raise RunTimeoutError(
                        "run timed out",
                        detail=f"run {run.id} still {run.status} after {self.settings.run_timeout}s",
                    )
                await asyncio.sleep(self.settings.poll_interval)
                try:
                    run = await self.client.beta.threads.runs.retrieve(run.id, thread_id=thread_id)
                except openai.APIError as e:
                    raise _remote_error("getting run", e)
        except asyncio.CancelledError:
            await asyncio.shield(self._cancel_run(thread_id, run.id))
            raise

        return run

    async def send_message(self, thread_id: str, text: str, assistant_id: str) -> str:
        """
        Send a user message and wait for the assistant's reply.

        Raises:
            RemoteAPIError: If any remote call fails or the run does not complete
            NoResponseError: If the completed run produced no assistant text
        """
        await self._add_user_message(thread_id, text)
        run = await self._start_run(thread_id, assistant_id)
        run = await self.wait_for_run(thread_id, run)

        if run.status != "completed":
            raise RemoteAPIError("run failed", detail=_describe_run_error(run))

        try:
            messages = await self.client.beta.threads.messages.list(thread_id, order="desc", run_id=run.id)
        except openai.APIError as e:
            raise _remote_error("listing messages", e)

        for message in messages.data:
            if message.role != "assistant":
                continue
            reply = _first_text(message)
            if reply is not None:
                return reply

        raise NoResponseError()

    async def stream_message(self, thread_id: str, text: str, assistant_id: str, sink: Sink) -> int:
        """
        Send a user message and push the reply into sink in paced chunks.

        Nothing reaches sink unless the run completes.

        Returns:
            Number of chunks pushed

        Raises:
            RemoteAPIError: If any remote call fails or the run does not complete
        """
        await self._add_user_message(thread_id, text)
        run = await self._start_run(thread_id, assistant_id)
        run = await self.wait_for_run(thread_id, run)

        if run.status != "completed":
            raise RemoteAPIError("run failed", detail=_describe_run_error(run))

        try:
            messages = await self.client.beta.threads.messages.list(thread_id, order="desc", limit=1)
        except openai.APIError as e:
            raise _remote_error("listing messages", e)

        sent = 0
        for message in messages.data:
            if message.role != "assistant":
                logger.warning(f"Latest message on thread {thread_id} is not from the assistant")
                continue
            for block in message.content:
                if block.type == "text":
                    sent += await self.chunker.emit(block.text.value, sink)
        return sent

    async def close(self):
        if self.http_client:
            await self.http_client.aclose()
