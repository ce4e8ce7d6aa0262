"""Pydantic models for answer requests."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from rag_stream.types import Message


class LLMConfig(BaseModel):
    provider: str  # openai | fireworks | together | google | groq
    model: str


class RelatedQuestionsConfig(BaseModel):
    enabled: bool | None = None
    size: int | None = None
    format: Literal["question", "query"] | None = None


class AnswerConfig(BaseModel):
    """What the caller asks for. Unset ids are filled in per request."""

    query: str
    interaction_id: str | None = None
    visitor_id: str | None = None
    session_id: str | None = None
    messages: list[Message] | None = None
    related: RelatedQuestionsConfig | None = None
    datasource_ids: list[str] | None = None
    min_similarity: float | None = None
    max_documents: int | None = None
    ragat_notation: str | None = None

    @property
    def wants_related(self) -> bool:
        return bool(self.related and self.related.enabled)


class AnswerRequestBody(BaseModel):
    interaction_id: str
    query: str
    visitor_id: str
    conversation_id: str
    messages: list[dict[str, Any]] = Field(default_factory=list)
    llm_config: LLMConfig | None = None
    related: RelatedQuestionsConfig | None = None
    datasource_ids: list[str] | None = None
    min_similarity: float | None = None
    max_documents: int | None = None
    ragat_notation: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON body: optional fields are omitted when unset, llm_config is always sent."""
        payload = self.model_dump(exclude_none=True)
        payload.setdefault("llm_config", None)
        return payload
