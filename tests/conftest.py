"""
Shared fixtures: in-memory stand-ins for the OpenAI client, the gateway and
WebSocket connections.
"""

import asyncio
import itertools
from types import SimpleNamespace

import httpx
import openai
import pytest
from fastapi import WebSocketDisconnect

from finassist.chunking import Chunker
from finassist.config import Settings
from finassist.errors import RemoteAPIError


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("GET", "https://api.openai.com/v1"))


def text_message(message_id, role, text, run_id=None):
    return SimpleNamespace(
        id=message_id,
        role=role,
        run_id=run_id,
        content=[SimpleNamespace(type="text", text=SimpleNamespace(value=text))],
    )


class FakePage:
    """Both awaitable-result shape (.data) and async iterable, like SDK pages."""

    def __init__(self, items):
        self.data = list(items)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.data:
            yield item


# ----------------------------------------------------------------------
# Fake OpenAI client
# ----------------------------------------------------------------------

class FakeAssistants:
    def __init__(self, remote):
        self.remote = remote
        self.items = []
        self.created = []
        self.updated = []
        self.list_error = None

    def list(self, order="desc"):
        if self.list_error:
            raise self.list_error
        return FakePage(self.items)

    async def create(self, **kwargs):
        assistant = SimpleNamespace(id=f"asst_{len(self.created) + 1}", **kwargs)
        self.created.append(kwargs)
        self.items.insert(0, assistant)
        return assistant

    async def update(self, assistant_id, **kwargs):
        self.updated.append((assistant_id, kwargs))
        return SimpleNamespace(id=assistant_id, **kwargs)


class FakeMessages:
    def __init__(self, remote):
        self.remote = remote
        self.created = []

    async def create(self, thread_id, role, content):
        message = text_message(f"msg_{next(self.remote.ids)}", role, content)
        self.created.append((thread_id, role, content))
        self.remote.thread_messages.setdefault(thread_id, []).insert(0, message)
        return message

    async def list(self, thread_id, order="desc", run_id=None, limit=None):
        messages = self.remote.thread_messages.get(thread_id, [])
        if run_id is not None:
            messages = [m for m in messages if m.run_id == run_id]
        if limit is not None:
            messages = messages[:limit]
        return FakePage(messages)


class FakeRuns:
    """Runs walk through remote.run_statuses, one step per retrieve."""

    def __init__(self, remote):
        self.remote = remote
        self.created = []
        self.cancelled = []
        self.retrieves = 0
        # When set to an asyncio.Event, create() holds until it is set
        self.run_gate = None

    def _run(self, run_id, thread_id, status):
        last_error = None
        if status == "failed":
            last_error = SimpleNamespace(code="server_error", message=self.remote.failure_message)
        run = SimpleNamespace(id=run_id, thread_id=thread_id, status=status, last_error=last_error)
        if status == "completed" and self.remote.reply is not None:
            existing = self.remote.thread_messages.setdefault(thread_id, [])
            if not any(m.run_id == run_id for m in existing):
                existing.insert(0, text_message(f"msg_{next(self.remote.ids)}", "assistant", self.remote.reply, run_id))
        return run

    async def create(self, thread_id, assistant_id, **kwargs):
        self.created.append(dict(thread_id=thread_id, assistant_id=assistant_id, **kwargs))
        if self.run_gate is not None:
            await self.run_gate.wait()
        self._statuses = iter(self.remote.run_statuses)
        return self._run(f"run_{len(self.created)}", thread_id, next(self._statuses))

    async def retrieve(self, run_id, thread_id):
        self.retrieves += 1
        status = next(self._statuses, self.remote.run_statuses[-1])
        return self._run(run_id, thread_id, status)

    async def cancel(self, run_id, thread_id):
        self.cancelled.append(run_id)
        return SimpleNamespace(id=run_id, status="cancelling")


class FakeThreads:
    def __init__(self, remote):
        self.remote = remote
        self.messages = FakeMessages(remote)
        self.runs = FakeRuns(remote)
        self.count = 0

    async def create(self):
        self.count += 1
        return SimpleNamespace(id=f"thread_{self.count}")


class FakeFileBatches:
    def __init__(self, remote):
        self.remote = remote
        self.uploads = []
        self.status = "completed"

    async def upload_and_poll(self, vector_store_id, files, poll_interval_ms=None):
        self.uploads.append((vector_store_id, [f.name for f in files], poll_interval_ms))
        return SimpleNamespace(id="vsfb_1", status=self.status)


class FakeVectorStores:
    def __init__(self, remote):
        self.remote = remote
        self.created = []
        self.file_batches = FakeFileBatches(remote)
        self.create_error = None

    async def create(self, **kwargs):
        if self.create_error:
            raise self.create_error
        self.created.append(kwargs)
        return SimpleNamespace(id=f"vs_{len(self.created)}", **kwargs)


class FakeOpenAI:
    def __init__(self):
        self.ids = itertools.count(1)
        self.thread_messages = {}
        self.run_statuses = ["queued", "in_progress", "completed"]
        self.reply = "Hi there"
        self.failure_message = "The server had an error"

        self.beta = SimpleNamespace(assistants=FakeAssistants(self), threads=FakeThreads(self))
        self.vector_stores = FakeVectorStores(self)


# ----------------------------------------------------------------------
# Fake gateway, for server and handler tests
# ----------------------------------------------------------------------

class FakeGateway:
    def __init__(self):
        self.reply = "Hi there"
        self.replies = {}
        self.stream_error = None
        self.send_error = None
        self.index_error = None
        self.block_stream = False
        self.stream_cancelled = False
        self.threads = 0
        self.sent = []
        self.streamed = []
        self.indexed = []
        self.attached = []
        self.closed = False
        self.chunker = Chunker(size=1, delay=0)

    async def create_or_get_assistant(self, assistant_id):
        return SimpleNamespace(id=assistant_id)

    async def create_thread(self):
        self.threads += 1
        return SimpleNamespace(id=f"thread_{self.threads}")

    async def send_message(self, thread_id, text, assistant_id):
        self.sent.append((thread_id, text, assistant_id))
        if self.send_error:
            raise self.send_error
        return self.replies.get(text, self.reply)

    async def stream_message(self, thread_id, text, assistant_id, sink):
        self.streamed.append((thread_id, text, assistant_id))
        if self.block_stream:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.stream_cancelled = True
                raise
        if self.stream_error:
            raise self.stream_error
        return await self.chunker.emit(self.replies.get(text, self.reply), sink)

    async def create_document_index(self, paths=None):
        if self.index_error:
            raise self.index_error
        self.indexed.append(list(paths or []))
        return f"vs_{len(self.indexed)}"

    async def attach_index_to_assistant(self, assistant_id, index_id):
        self.attached.append((assistant_id, index_id))
        return SimpleNamespace(id=assistant_id)

    async def close(self):
        self.closed = True


class FakeWebSocket:
    """Scripted WebSocket: feed() inbound frames, inspect .sent afterwards."""

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.accepted = False
        self.closed = False
        self.fail_send = False

    def feed(self, item):
        self.incoming.put_nowait(item)

    def disconnect(self):
        self.feed(WebSocketDisconnect(code=1000))

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_send or self.closed:
            raise RuntimeError("WebSocket is not connected")
        self.sent.append(data)

    async def receive_json(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code=1000):
        self.closed = True


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def make_settings(tmp_path, **overrides):
    values = dict(
        openai_api_key="sk-test",
        documents_dir=tmp_path / "files",
        uploads_dir=tmp_path / "uploads",
        static_dir=tmp_path / "static",
        assistant_prompt_file=tmp_path / "assistant_prompt.txt",
        thread_prompt_file=tmp_path / "thread_prompt.txt",
        poll_interval=0.001,
        run_timeout=5.0,
        stream_delay=0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def remote_error():
    return RemoteAPIError("run failed", detail="server_error: boom")
