"""Map framed SSE events onto the typed event union.

Two envelope shapes are in circulation:

* ``{"type": "response", "message": "<json>"}`` where the inner message is a
  JSON-encoded ``{"action", "result", "done"}`` object (answer and planned
  answer endpoints). ``{"type": "acknowledgement"}`` shares this shape.
* A flat object such as ``{"type": "answer_token", "token": "..."}`` or
  ``{"state": "...", "data": {...}}`` (newer generate endpoint).

All JSON handling lives here. Nothing in this module raises on bad input:
unparseable payloads come back as ``RawStatus`` and structurally broken
envelopes are dropped (``None``).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from rag_stream.events import (
    ActionKind,
    Completed,
    DecodedEvent,
    Error,
    OptimizedQuery,
    Plan,
    ProbabilityUpdate,
    RawStatus,
    RelatedQueries,
    SearchResults,
    SegmentDetected,
    SelectedModel,
    StateChanged,
    Step,
    Token,
    TriggerDetected,
)

_log = logging.getLogger("rag_stream")

ENVELOPE_TYPES = frozenset({"response", "acknowledgement"})


def safe_json_parse(text: Any) -> Any:
    """``json.loads`` that hands back the input unchanged when it is not JSON."""
    if not isinstance(text, (str, bytes, bytearray)):
        return text
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return text


def decode_event(framed: Mapping[str, str]) -> DecodedEvent | None:
    """Decode the ``data`` field of one framed SSE event."""
    payload = framed.get("data", "")
    if not payload or not payload.strip():
        return None

    parsed = safe_json_parse(payload)
    if not isinstance(parsed, dict):
        _log.debug("Non-object SSE payload passed through: %.200r", payload)
        return RawStatus(payload)

    if parsed.get("type") in ENVELOPE_TYPES:
        return _decode_envelope(parsed)
    return _decode_flat(parsed, payload)


# ---------------------------------------------------------------------------
# {type, message} envelopes
# ---------------------------------------------------------------------------


def _decode_envelope(envelope: dict[str, Any]) -> DecodedEvent | None:
    if envelope["type"] == "acknowledgement":
        return StateChanged("acknowledgement", message=envelope.get("message"))

    message = envelope.get("message")
    if message is None or message == "":
        return None

    inner = safe_json_parse(message)
    if not isinstance(inner, dict) or not isinstance(inner.get("action"), str):
        _log.debug("Dropping response envelope without action: %.200r", message)
        return None

    action = inner["action"]
    result = inner.get("result")
    done = bool(inner.get("done", False))

    kind = ActionKind.lookup(action)
    if kind is None:
        return Step(action, _as_text(result), done)
    return _ACTION_DECODERS[kind](kind, result, done)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _token(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    if result is None:
        return None
    return Token(_as_text(result))


def _step_token(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    return Token(_as_text(result), step=kind.value, done=done)


def _search_results(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    step = kind.value if kind is ActionKind.PERFORM_ORAMA_SEARCH else None
    return SearchResults(safe_json_parse(result), step=step)


def _plan(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    steps = safe_json_parse(result)
    if not isinstance(steps, list) or not all(isinstance(s, dict) and "step" in s for s in steps):
        _log.debug("Dropping malformed action plan: %.200r", result)
        return None
    return Plan(steps)


def _optimized_query(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    return OptimizedQuery(safe_json_parse(result))


def _related(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    return RelatedQueries(_as_text(result))


def _detected(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    # The model behind these actions occasionally produces garbage; only a
    # well-formed {id, name} object is accepted.
    value = safe_json_parse(result)
    if not isinstance(value, dict) or "id" not in value or "name" not in value:
        _log.debug("Dropping malformed %s result: %.200r", kind.value, result)
        return None
    cls = SegmentDetected if kind is ActionKind.GET_SEGMENT else TriggerDetected
    return cls(str(value["id"]), str(value["name"]))


def _probability(kind: ActionKind, result: Any, done: bool) -> DecodedEvent | None:
    value = safe_json_parse(result)
    if isinstance(value, dict):
        value = value.get("probability")
    try:
        probability = float(value)
    except (TypeError, ValueError):
        _log.debug("Dropping malformed %s result: %.200r", kind.value, result)
        return None
    target = "segment" if kind is ActionKind.SELECT_SEGMENT_PROBABILITY else "trigger"
    return ProbabilityUpdate(probability, target)


_ACTION_DECODERS: dict[ActionKind, Callable[[ActionKind, Any, bool], DecodedEvent | None]] = {
    ActionKind.ANSWER_RESPONSE: _token,
    ActionKind.GIVE_REPLY: _step_token,
    ActionKind.ASK_FOLLOWUP: _step_token,
    ActionKind.SEARCH_RESULTS: _search_results,
    ActionKind.PERFORM_ORAMA_SEARCH: _search_results,
    ActionKind.ACTION_PLAN: _plan,
    ActionKind.OPTIMIZING_QUERY: _optimized_query,
    ActionKind.RELATED_QUERIES: _related,
    ActionKind.GET_SEGMENT: _detected,
    ActionKind.GET_TRIGGER: _detected,
    ActionKind.SELECT_SEGMENT_PROBABILITY: _probability,
    ActionKind.SELECT_TRIGGER_PROBABILITY: _probability,
}


# ---------------------------------------------------------------------------
# Flat objects
# ---------------------------------------------------------------------------


def _decode_flat(obj: dict[str, Any], payload: str) -> DecodedEvent | None:
    event_type = obj.get("type")
    if event_type is None and "state" in obj:
        event_type = "state_changed"
    if not isinstance(event_type, str):
        return RawStatus(payload)

    if event_type == "answer_token":
        token = obj.get("token")
        return Token(token) if isinstance(token, str) and token else None
    if event_type == "selected_llm":
        return SelectedModel(str(obj.get("provider", "")), str(obj.get("model", "")))
    if event_type == "optimizing_query":
        return OptimizedQuery(safe_json_parse(obj.get("optimized_query")))
    if event_type == "search_results":
        return SearchResults(obj.get("results"))
    if event_type == "related_queries":
        return RelatedQueries(_as_text(obj.get("queries")), replace=True)
    if event_type == "state_changed":
        state = obj.get("state")
        if not isinstance(state, str):
            return None
        if state == "completed":
            return Completed()
        return StateChanged(state, payload=obj.get("data"), message=obj.get("message"))
    if event_type == "error":
        message = obj.get("error") or obj.get("message") or "Unknown error"
        return Error(str(message), terminal=bool(obj.get("is_terminal", True)))
    if event_type == "completed":
        return Completed()

    # keep-alives and newer progress types: surface as a step name only
    _log.debug("Unknown flat event type %r", event_type)
    return StateChanged(event_type, payload=obj.get("data"), message=obj.get("message"))
