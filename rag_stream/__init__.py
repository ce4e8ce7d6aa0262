"""Streaming answer-session client for a remote search/RAG service.

Bytes from the answer endpoint are framed as Server-Sent-Events
(``rag_stream.sse``), decoded into typed events (``rag_stream.decoder``) and
folded into the conversation state (``rag_stream.state``) by an
``AnswerSession``.
"""

from rag_stream.auth import ApiKeyAuth, AuthError, JWTAuth
from rag_stream.bus import AnswerCancelled, CancelToken
from rag_stream.client import RagClient, TransportError
from rag_stream.decoder import decode_event, safe_json_parse
from rag_stream.models import AnswerConfig, LLMConfig, RelatedQuestionsConfig
from rag_stream.session import AnswerSession, SessionError
from rag_stream.sse import SSEDecoder, iter_sse_events
from rag_stream.state import ConversationState
from rag_stream.types import Interaction, InteractionStatus, Message

__all__ = [
    "AnswerSession",
    "SessionError",
    "AnswerConfig",
    "LLMConfig",
    "RelatedQuestionsConfig",
    "Message",
    "Interaction",
    "InteractionStatus",
    "ConversationState",
    "RagClient",
    "TransportError",
    "ApiKeyAuth",
    "JWTAuth",
    "AuthError",
    "CancelToken",
    "AnswerCancelled",
    "SSEDecoder",
    "iter_sse_events",
    "decode_event",
    "safe_json_parse",
]
