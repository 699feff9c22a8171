"""
Financial Assistant Configuration

Handles environment configuration and prompt file loading.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError, FileIOError

logger = logging.getLogger(__name__)


# Remote assistant defaults
DEFAULT_ASSISTANT_ID = "asst_v3GzI9KkkvrJTXWNn0w7Zfya"
DEFAULT_MODEL = "gpt-4-1106-preview"
ASSISTANT_NAME = "Financial Assistant"
INDEX_NAME = "Financial Statements"

# Server defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

# Message sent to every client right after the WebSocket is accepted
WELCOME_MESSAGE = "Connected to Financial Assistant"


class Settings(BaseModel):
    """Resolved runtime settings."""
    openai_api_key: str = Field(..., description="Credential for the remote assistant API")
    assistant_id: str = Field(DEFAULT_ASSISTANT_ID, description="Assistant looked up (or created) at startup")
    model_name: str = Field(DEFAULT_MODEL, description="Model used when a new assistant is created")
    assistant_name: str = ASSISTANT_NAME
    index_name: str = INDEX_NAME
    index_expiry_days: int = 1

    host: str = DEFAULT_HOST
    port: int = Field(DEFAULT_PORT, ge=1, le=65535)

    documents_dir: Path = Path("files")
    uploads_dir: Path = Path("uploads")
    # Frontend assets, served for any path no route matches
    static_dir: Path = Path("static")
    assistant_prompt_file: Path = Path("prompts/assistant_prompt.txt")
    thread_prompt_file: Path = Path("prompts/thread_prompt.txt")

    # Run polling and client-side pacing
    poll_interval: float = Field(1.0, gt=0)
    run_timeout: Optional[float] = Field(300.0, description="Maximum wait for a run; None waits forever")
    stream_chunk_size: int = Field(1, ge=1)
    stream_delay: float = Field(0.05, ge=0)
    request_timeout: float = 120.0

    # One remote thread per WebSocket connection instead of one shared thread
    isolate_sessions: bool = True


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """
    Build settings from environment variables.

    Raises:
        ConfigError: If the API credential is missing or a value is malformed
    """
    api_key = os.getenv("OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY_1")
    if not api_key:
        raise ConfigError("OPENAI_API_KEY environment variable is not set")

    run_timeout = _env_number("FINASSIST_RUN_TIMEOUT", "300", float)

    try:
        return Settings(
            openai_api_key=api_key,
            assistant_id=os.getenv("ASSISTANT_ID") or DEFAULT_ASSISTANT_ID,
            model_name=os.getenv("MODEL_NAME") or DEFAULT_MODEL,
            host=os.getenv("FINASSIST_HOST", DEFAULT_HOST),
            port=_env_number("FINASSIST_PORT", str(DEFAULT_PORT), int),
            static_dir=Path(os.getenv("FINASSIST_STATIC_DIR", "static")),
            documents_dir=Path(os.getenv("FINASSIST_DOCUMENTS_DIR", "files")),
            uploads_dir=Path(os.getenv("FINASSIST_UPLOADS_DIR", "uploads")),
            assistant_prompt_file=Path(os.getenv("FINASSIST_ASSISTANT_PROMPT", "prompts/assistant_prompt.txt")),
            thread_prompt_file=Path(os.getenv("FINASSIST_THREAD_PROMPT", "prompts/thread_prompt.txt")),
            poll_interval=_env_number("FINASSIST_POLL_INTERVAL", "1.0", float),
            run_timeout=run_timeout if run_timeout > 0 else None,
            stream_chunk_size=_env_number("FINASSIST_STREAM_CHUNK_SIZE", "1", int),
            stream_delay=_env_number("FINASSIST_STREAM_DELAY", "0.05", float),
            request_timeout=_env_number("FINASSIST_REQUEST_TIMEOUT", "120", float),
            isolate_sessions=_env_flag("FINASSIST_ISOLATE_SESSIONS", "true"),
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")


def read_prompt(path: Path) -> str:
    """
    Read a plain-text prompt file.

    A missing file yields empty instructions so the assistant still runs.

    Raises:
        FileIOError: If the file exists but cannot be read
    """
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning(f"Prompt file not found: {path}")
        return ""
    except (OSError, UnicodeDecodeError) as e:
        raise FileIOError(path, str(e))


def list_document_files(folder: Path) -> list:
    """Return every regular file under folder, recursively, in sorted order."""
    folder = Path(folder)
    if not folder.is_dir():
        logger.warning(f"Documents folder not found: {folder}")
        return []

    files = sorted(p for p in folder.rglob("*") if p.is_file())
    logger.info(f"Found {len(files)} files in the folder {folder}")
    return files
