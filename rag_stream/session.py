"""rag_stream/session.py"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any, Protocol

from rag_stream.auth import KeyPosition
from rag_stream.bus import AnswerCancelled, CancelToken
from rag_stream.config import RAG_COLLECTION_ID
from rag_stream.decoder import decode_event
from rag_stream.events import DecodedEvent
from rag_stream.models import AnswerConfig, AnswerRequestBody, LLMConfig
from rag_stream.sse import iter_sse_events
from rag_stream.state import ConversationState, StateCallback
from rag_stream.types import Interaction, Message
from rag_stream.visitor import create_id, get_visitor_id

_log = logging.getLogger("rag_stream")


class SessionError(RuntimeError):
    """Operation not allowed in the session's current state."""


class StreamOpener(Protocol):
    """What the session needs from a transport (see ``RagClient.open_stream``)."""

    def open_stream(
        self,
        method: str,
        path: str,
        body: Any | None = None,
        api_key_position: KeyPosition = "query-params",
    ) -> Any: ...


class AnswerSession:
    """Multi-turn answer session against one collection.

    ``messages`` and ``state`` are the live conversation; treat them as
    read-only. Observers receive deep copies.
    """

    def __init__(
        self,
        client: StreamOpener,
        collection_id: str = RAG_COLLECTION_ID,
        session_id: str | None = None,
        llm_config: LLMConfig | None = None,
        initial_messages: list[Message] | None = None,
        on_state_change: StateCallback | None = None,
        on_end: StateCallback | None = None,
        on_incoming_event: Callable[[DecodedEvent], None] | None = None,
        visitor_id: str | None = None,
    ) -> None:
        self.client = client
        self.collection_id = collection_id
        self.session_id = session_id or create_id()
        self.llm_config = llm_config
        self.on_incoming_event = on_incoming_event
        self._visitor_id = visitor_id
        self._conversation = ConversationState(initial_messages, on_state_change, on_end)
        self._token: CancelToken | None = None
        self._active: Interaction | None = None
        self._last_request: tuple[AnswerConfig, bool] | None = None

    @property
    def messages(self) -> list[Message]:
        return self._conversation.messages

    @property
    def state(self) -> list[Interaction]:
        return self._conversation.state

    @property
    def in_flight(self) -> bool:
        return self._active is not None and self._conversation.is_active(self._active)

    # --- Public API ---

    async def answer(self, config: AnswerConfig | str) -> str:
        """Run an answer to completion and return the final response text."""
        return await self._collect(_coerce(config), planned=False)

    def answer_stream(self, config: AnswerConfig | str) -> AsyncIterator[str]:
        """Yield the growing response text each time it changes."""
        return self._run(_coerce(config), planned=False)

    async def reason(self, config: AnswerConfig | str) -> str:
        """Planned (multi-step) variant of ``answer``."""
        return await self._collect(_coerce(config), planned=True)

    def reason_stream(self, config: AnswerConfig | str) -> AsyncIterator[str]:
        return self._run(_coerce(config), planned=True)

    def abort(self) -> None:
        """Cancel the in-flight request and mark its interaction aborted."""
        if self._token is None or not self.in_flight:
            raise SessionError("There is no active request to abort.")
        _log.info("Aborting interaction %s", self._active.id)
        self._cancel_in_flight()

    def regenerate_last(self, stream: bool = True) -> AsyncIterator[str] | Coroutine[Any, Any, str]:
        """Drop the last exchange and submit the same request again.

        Returns an async iterator when *stream* is true, otherwise a coroutine
        resolving to the final text. The replaced request's mode (answer or reason) is kept.
        """
        if not self.state or not self.messages:
            raise SessionError("No messages to regenerate")
        if self.messages[-1].role != "assistant":
            raise SessionError("Last message is not an assistant message")
        if self._last_request is None:
            raise SessionError("No previous request to regenerate")

        self._cancel_in_flight()
        self._conversation.pop_last()

        config, planned = self._last_request
        config = config.model_copy(deep=True)
        if stream:
            return self._run(config, planned)
        return self._collect(config, planned)

    def clear_session(self) -> None:
        self._cancel_in_flight()
        self._conversation.clear()

    # --- Internals ---

    async def _collect(self, config: AnswerConfig, planned: bool) -> str:
        result = ""
        async for chunk in self._run(config, planned):
            result = chunk
        return result

    async def _run(self, config: AnswerConfig, planned: bool) -> AsyncIterator[str]:
        self._last_request = (config.model_copy(deep=True), planned)
        request = self._enrich(config)

        # at most one live stream per session
        self._cancel_in_flight()
        token = CancelToken()
        self._token = token

        interaction = self._conversation.begin(
            request.interaction_id, request.query, related=request.wants_related, planned=planned
        )
        self._active = interaction

        body = self._build_body(request)
        if planned:
            path, position = f"/v1/collections/{self.collection_id}/planned_answer", "header"
        else:
            path, position = f"/v1/collections/{self.collection_id}/generate/answer", "query-params"
        _log.info("POST %s interaction=%s", path, interaction.id)

        last_yielded = ""
        try:
            async with self.client.open_stream("POST", path, body=body, api_key_position=position) as chunks:
                guarded = token.guard(chunks)
                async with contextlib.aclosing(guarded), contextlib.aclosing(iter_sse_events(guarded)) as events:
                    async for framed in events:
                        event = decode_event(framed)
                        if event is None:
                            continue
                        self._emit_incoming(event)
                        self._conversation.apply(interaction, event)
                        if interaction.response != last_yielded:
                            last_yielded = interaction.response
                            yield last_yielded
                        if interaction.status.terminal:
                            break
            token.raise_if_cancelled()
            if interaction.error and interaction.status.terminal:
                _log.warning("Interaction %s ended with error: %s", interaction.id, interaction.error_message)
            if self._conversation.complete(interaction):
                _log.info("Interaction %s completed (%d chars)", interaction.id, len(interaction.response))
        except AnswerCancelled:
            self._conversation.abort(interaction)
        except (GeneratorExit, asyncio.CancelledError):
            # consumer stopped iterating, or its task was cancelled
            token.cancel()
            self._conversation.abort(interaction)
            raise
        except Exception as e:
            _log.warning("Interaction %s failed: %s", interaction.id, e)
            self._conversation.fail(interaction, str(e))
            raise
        finally:
            if self._token is token:
                self._token = None
                self._active = None

    def _cancel_in_flight(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._active is not None:
            self._conversation.abort(self._active)
        self._token = None
        self._active = None

    def _enrich(self, config: AnswerConfig) -> AnswerConfig:
        request = config.model_copy(deep=True)
        if not request.visitor_id:
            if self._visitor_id is None:
                self._visitor_id = get_visitor_id()
            request.visitor_id = self._visitor_id
        if not request.interaction_id:
            request.interaction_id = create_id()
        if not request.session_id:
            request.session_id = self.session_id
        return request

    def _build_body(self, request: AnswerConfig) -> dict[str, Any]:
        # history sent to the server excludes the empty assistant placeholder
        if request.messages is not None:
            history = [m.to_dict() for m in request.messages]
        else:
            history = [m.to_dict() for m in self.messages[:-1]]
        return AnswerRequestBody(
            interaction_id=request.interaction_id,
            query=request.query,
            visitor_id=request.visitor_id,
            conversation_id=request.session_id,
            messages=history,
            llm_config=self.llm_config,
            related=request.related,
            datasource_ids=request.datasource_ids,
            min_similarity=request.min_similarity,
            max_documents=request.max_documents,
            ragat_notation=request.ragat_notation,
        ).to_payload()

    def _emit_incoming(self, event: DecodedEvent) -> None:
        if self.on_incoming_event is None:
            return
        try:
            self.on_incoming_event(event)
        except Exception:
            _log.debug("incoming event observer failed for %s", type(event).__name__, exc_info=True)


def _coerce(config: AnswerConfig | str | dict[str, Any]) -> AnswerConfig:
    if isinstance(config, AnswerConfig):
        return config
    if isinstance(config, str):
        return AnswerConfig(query=config)
    return AnswerConfig.model_validate(config)
