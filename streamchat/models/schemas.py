"""Pydantic request/response schemas for all API routes.

Route files import from here and never define BaseModel subclasses directly.
The wire format uses camelCase (``sessionId``) for the browser client; Python
code uses snake_case attribute names.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from streamchat.models.events import ChatMode

# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=10000)
    session_id: str | None = Field(default=None, alias="sessionId", max_length=200)
    mode: ChatMode | None = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be whitespace-only")
        return v

    @field_validator("session_id")
    @classmethod
    def normalize_session_id(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


# ---------------------------------------------------------------------------
# PDF documents
# ---------------------------------------------------------------------------


class UploadResponse(BaseModel):
    success: bool
    message: str
    error: str | None = None
    chunk_count: int = Field(default=0, serialization_alias="chunkCount")


class CleanupResponse(BaseModel):
    success: bool
    message: str
    sessions_cleared: int = Field(default=0, serialization_alias="sessionsCleared")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    environment: str
    api_key_configured: bool
