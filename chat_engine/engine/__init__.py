from chat_engine.engine.models import (
    AssistantReply,
    Attachments,
    Chat,
    ChatEvent,
    ChatEventType,
    ChatRequest,
    ChatState,
    CompletionMetrics,
    FileAttachment,
    LanguageStyle,
    ModelDescriptor,
    ProviderKind,
    Role,
    Turn,
    WireMessage,
)
from chat_engine.engine.options import SamplingOptions, SamplingSettings
from chat_engine.engine.errors import (
    CannotConnect,
    ChatEngineError,
    InvalidInput,
    MalformedResponse,
    ProviderError,
    RequestBuildFailure,
    RequestFailed,
    ServiceError,
    ServiceUnavailable,
    TransportUnavailable,
)
from chat_engine.engine.filters import filter_for_display, filter_for_title
from chat_engine.engine.decoder import Framing, JSONLineSplitter, StreamDecoder
from chat_engine.engine.assembler import AssembledConversation, ConversationAssembler
from chat_engine.engine.catalog import ModelCatalog
from chat_engine.engine.orchestrator import ChatOrchestrator
from chat_engine.engine.chats import ChatDirectory

__all__ = [
    "AssembledConversation",
    "AssistantReply",
    "Attachments",
    "CannotConnect",
    "Chat",
    "ChatDirectory",
    "ChatEngineError",
    "ChatEvent",
    "ChatEventType",
    "ChatOrchestrator",
    "ChatRequest",
    "ChatState",
    "CompletionMetrics",
    "ConversationAssembler",
    "FileAttachment",
    "Framing",
    "InvalidInput",
    "JSONLineSplitter",
    "LanguageStyle",
    "MalformedResponse",
    "ModelCatalog",
    "ModelDescriptor",
    "ProviderError",
    "ProviderKind",
    "RequestBuildFailure",
    "RequestFailed",
    "Role",
    "SamplingOptions",
    "SamplingSettings",
    "ServiceError",
    "ServiceUnavailable",
    "StreamDecoder",
    "TransportUnavailable",
    "Turn",
    "WireMessage",
    "filter_for_display",
    "filter_for_title",
]
