"""
Financial Assistant Backend

FastAPI application relaying chat between browser clients and the hosted
assistant.
"""

import logging
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True))

from fastapi import FastAPI, File, HTTPException, Request, UploadFile, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .assistant_gateway import AssistantGateway
from .chat_handler import ConnectionHandler
from .config import list_document_files, load_settings
from .errors import FileIOError, NoResponseError, RemoteAPIError
from .models import ErrorResponse, SendMessageRequest, SendMessageResponse, UploadResponse
from .registry import ConnectionRegistry
from .session import ChatSession, LazySession, SharedSession

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Financial Assistant",
    description="Chat relay to a hosted assistant with file search",
    version="1.0.0",
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Accept"],
    expose_headers=["Content-Length"],
)


@app.on_event("startup")
async def startup_event():
    """
    Resolve the assistant and open the shared thread.

    Settings or a gateway already placed on app.state are used as-is.
    """
    settings = getattr(app.state, "settings", None) or load_settings()
    gateway = getattr(app.state, "gateway", None) or AssistantGateway(settings)

    logger.info(f"Creating or getting assistant with ID: {settings.assistant_id}")
    assistant = await gateway.create_or_get_assistant(settings.assistant_id)
    thread = await gateway.create_thread()

    registry = ConnectionRegistry()
    registry.start()

    app.state.settings = settings
    app.state.gateway = gateway
    app.state.registry = registry
    app.state.session = ChatSession(assistant_id=assistant.id, thread_id=thread.id)
    app.state.static_route = mount_static(settings.static_dir)

    logger.info(f"Financial Assistant starting on {settings.host}:{settings.port}")
    logger.info(f"Assistant: {assistant.id}, thread: {thread.id}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the broadcaster and release the gateway."""
    static_route = getattr(app.state, "static_route", None)
    if static_route in app.router.routes:
        app.router.routes.remove(static_route)
    registry = getattr(app.state, "registry", None)
    if registry:
        await registry.stop()
    gateway = getattr(app.state, "gateway", None)
    if gateway:
        await gateway.close()
    logger.info("Financial Assistant shut down")


def mount_static(directory: Path):
    """
    Serve frontend files for any path no route matches.

    Mounted after every route so API paths win. Returns the mounted route, or
    None when the directory does not exist.
    """
    if not directory.is_dir():
        logger.info(f"No static directory at {directory}")
        return None
    app.mount("/", StaticFiles(directory=str(directory), html=True), name="static")
    return app.router.routes[-1]


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Financial Assistant",
        "assistant_id": app.state.session.assistant_id,
        "thread_id": app.state.session.thread_id,
        "connections": app.state.registry.count,
    }


# ============================================================================
# Chat Endpoints
# ============================================================================

@app.post("/api/send", response_model=SendMessageResponse)
async def send_message(request: SendMessageRequest):
    """
    Send a message on the shared thread and wait for the full reply.
    """
    settings = app.state.settings
    gateway = app.state.gateway

    try:
        assistant = await gateway.create_or_get_assistant(settings.assistant_id)
        reply = await gateway.send_message(app.state.session.thread_id, request.message, assistant.id)

        logger.info(f"Chat completed ({len(reply)} chars)")
        return SendMessageResponse(status="success", response=reply)

    except (RemoteAPIError, NoResponseError, FileIOError) as e:
        logger.error(f"Assistant error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...)):
    """
    Store an uploaded document and rebuild the assistant's search index.

    The new index holds the documents folder plus the upload, and replaces
    whatever index the assistant used before.
    """
    settings = app.state.settings
    gateway = app.state.gateway

    filename = Path(file.filename or "").name
    if not filename:
        raise HTTPException(status_code=400, detail="No file name provided")

    try:
        settings.uploads_dir.mkdir(parents=True, exist_ok=True)
        saved_path = settings.uploads_dir / filename
        saved_path.write_bytes(await file.read())
        logger.info(f"Saved upload: {saved_path}")
    except OSError as e:
        logger.error(f"Error saving upload {filename}: {e}")
        raise HTTPException(status_code=500, detail=f"Error saving file: {e}")

    documents = list(dict.fromkeys(
        p.resolve() for p in list_document_files(settings.documents_dir) + [saved_path]
    ))

    try:
        index_id = await gateway.create_document_index(documents)
        assistant = await gateway.create_or_get_assistant(settings.assistant_id)
        await gateway.attach_index_to_assistant(assistant.id, index_id)
    except (RemoteAPIError, FileIOError) as e:
        logger.error(f"Indexing error for {filename}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"Upload {filename} indexed into vector store {index_id}")
    return UploadResponse(status="success", file=filename)


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Custom handler for HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            detail=None,
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Invalid request",
            detail="; ".join(err.get("msg", "") for err in exc.errors()),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc),
        ).model_dump(),
    )


# ============================================================================
# Chat WebSocket Endpoint
# ============================================================================

@app.websocket("/ws")
async def chat_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for streamed chat.
    Each connection gets its own thread unless session isolation is off.
    """
    logger.info("New WebSocket connection request...")
    if app.state.settings.isolate_sessions:
        session = LazySession(app.state.gateway, app.state.session.assistant_id)
    else:
        session = SharedSession(app.state.session)

    handler = ConnectionHandler(websocket, app.state.gateway, app.state.registry, session)
    await handler.run()



# ============================================================================
# Development Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "finassist.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level="info",
    )
