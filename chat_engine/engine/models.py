"""Chats, turns, provider wire messages and outbound events."""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from chat_engine.engine.options import SamplingOptions

DEFAULT_CHAT_NAME = "New Chat"
CHAT_AVATARS = ("ollama-1", "ollama-2", "ollama-3")
AUTO_LANGUAGE = "Auto"


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class ProviderKind(str, Enum):
    OLLAMA = "ollama"
    OLLAMA_CLOUD = "ollama_cloud"
    GROQ = "groq"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ProviderKind.OLLAMA: "Ollama",
    ProviderKind.OLLAMA_CLOUD: "Ollama Cloud",
    ProviderKind.GROQ: "Groq",
    ProviderKind.DEEPSEEK: "DeepSeek",
    ProviderKind.OPENROUTER: "OpenRouter",
}


class LanguageStyle(str, Enum):
    """Where the response-language directive goes in an assembled request."""
    INLINE = "inline"   # appended to the new user content
    SYSTEM = "system"   # prepended as a standalone system message


class ModelDescriptor(BaseModel):
    name: str
    display_name: str = ""
    provider: ProviderKind
    size_bytes: int = 0
    parameter_size: str = ""
    is_default: bool = False

    @property
    def size_label(self) -> str:
        return f"{self.size_bytes / (1024.0 ** 3):.2f}GB"


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FileAttachment(BaseModel):
    name: str
    type: str = ""
    extracted_text: str = ""


class Attachments(BaseModel):
    images: list[str] = Field(default_factory=list)  # base64
    file: FileAttachment | None = None

    @property
    def has_images(self) -> bool:
        return bool(self.images)

    @property
    def is_empty(self) -> bool:
        return not self.images and self.file is None


class CompletionMetrics(BaseModel):
    """Generation statistics reported by the local-inference final record."""
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    eval_count: int = 0
    eval_duration: int = 0


class Turn(BaseModel):
    """One message of a chat. Immutable once persisted."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat_id: str
    model_name: str
    created_at: datetime = Field(default_factory=datetime.now)
    role: Role
    content: str
    attachments: Attachments = Field(default_factory=Attachments)
    metrics: CompletionMetrics = Field(default_factory=CompletionMetrics)


class Chat(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = DEFAULT_CHAT_NAME
    avatar: str = CHAT_AVATARS[0]
    created_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Provider request / reply
# ---------------------------------------------------------------------------

class WireMessage(BaseModel):
    """A single role/content entry of an outgoing request."""
    role: Role
    content: str
    images: list[str] | None = None


class ChatRequest(BaseModel):
    model_name: str
    messages: list[WireMessage]
    options: SamplingOptions = Field(default_factory=SamplingOptions)
    response_language: str = AUTO_LANGUAGE
    stream: bool = False


class AssistantReply(BaseModel):
    """Complete (non-streaming) provider response."""
    content: str = ""
    model_name: str = ""
    done: bool = True
    metrics: CompletionMetrics = Field(default_factory=CompletionMetrics)


# ---------------------------------------------------------------------------
# Outbound events (orchestrator → adapter)
# ---------------------------------------------------------------------------

class ChatState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    AWAITING_BUFFERED = "awaiting_buffered"


class ChatEventType(str, Enum):
    USER_TURN = "user_turn"
    STATE = "state"
    TOKEN = "token"
    FINAL = "final"
    ERROR = "error"


class ChatEvent(BaseModel):
    type: ChatEventType
    chat_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
