"""
Financial Assistant API Models

Pydantic models for request/response validation and WebSocket frames.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# WebSocket frame models

FrameType = Literal["system", "user", "ai", "error"]


class ChatFrame(BaseModel):
    """Single WebSocket frame, in either direction."""
    model_config = ConfigDict(populate_by_name=True)

    type: FrameType = Field("user", description="Origin of the frame: 'system', 'user', 'ai' or 'error'")
    content: str = Field("", description="Message text or one streamed chunk")
    sender: str = Field("", description="Who produced the frame")
    is_stream: bool = Field(False, alias="isStream", description="True for a partial streaming chunk")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def system_frame(content: str) -> ChatFrame:
    return ChatFrame(type="system", content=content, sender="system")


def chunk_frame(content: str) -> ChatFrame:
    return ChatFrame(type="ai", content=content, sender="ai", is_stream=True)


def terminal_frame() -> ChatFrame:
    """Marks the end of one streamed reply."""
    return ChatFrame(type="ai", content="", sender="ai", is_stream=False)


def error_frame(content: str = "Error processing message") -> ChatFrame:
    return ChatFrame(type="error", content=content, sender="system")


# REST models

class SendMessageRequest(BaseModel):
    """Request to send a chat message to the assistant."""
    message: str = Field(..., min_length=1, description="User message text")


class SendMessageResponse(BaseModel):
    """Response carrying the assistant's reply."""
    status: str = Field(default="success", description="Operation status")
    response: str = Field(..., description="Assistant reply text")


class UploadResponse(BaseModel):
    """Response for a document upload."""
    status: str = Field(default="success", description="Operation status")
    file: str = Field(..., description="Name the upload was stored under")


# Error response model

class ErrorResponse(BaseModel):
    """Error response."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
