from __future__ import annotations

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


Role = Literal["user", "assistant"]


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role = Field(..., description="'user' or 'assistant'")
    content: str


Transcript = Tuple[Turn, ...]


class ChunkMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class ChatChunk(BaseModel):
    """One newline-delimited object of the backend's streamed reply."""

    message: Optional[ChunkMessage] = None
    done: bool = False


class PartialReply(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    done: bool = False


class TurnResult(BaseModel):
    session_id: str
    reply_raw: str
    reply_html: str
    fragments: int
