"""Wire payloads of the HTTP session API."""

from typing import List, Optional

from pydantic import BaseModel, Field


class StartSessionRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class StartSessionResponse(BaseModel):
    session_id: str


class AppendResponse(BaseModel):
    accepted_index: int = Field(ge=0)
    parts: int = Field(ge=1)


class PartialResponse(BaseModel):
    partial: str = ""


class FinalizeResponse(BaseModel):
    session_id: str
    transcript: str
    parts: int = Field(ge=0)
    failed_parts: List[int] = Field(default_factory=list)


class CancelResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    error: str
    message: str = ""
    retryable: bool = False
