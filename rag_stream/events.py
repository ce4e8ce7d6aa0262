"""Typed events produced by the protocol decoder and folded by the state machine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Literal, Union


class ActionKind(str, enum.Enum):
    """Action names carried inside a ``{type: "response"}`` envelope."""

    ANSWER_RESPONSE = "ANSWER_RESPONSE"
    GIVE_REPLY = "GIVE_REPLY"
    ASK_FOLLOWUP = "ASK_FOLLOWUP"
    SEARCH_RESULTS = "SEARCH_RESULTS"
    PERFORM_ORAMA_SEARCH = "PERFORM_ORAMA_SEARCH"
    ACTION_PLAN = "ACTION_PLAN"
    OPTIMIZING_QUERY = "OPTIMIZING_QUERY"
    RELATED_QUERIES = "RELATED_QUERIES"
    GET_SEGMENT = "GET_SEGMENT"
    GET_TRIGGER = "GET_TRIGGER"
    SELECT_SEGMENT_PROBABILITY = "SELECT_SEGMENT_PROBABILITY"
    SELECT_TRIGGER_PROBABILITY = "SELECT_TRIGGER_PROBABILITY"

    @classmethod
    def lookup(cls, name: str) -> ActionKind | None:
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class Token:
    """A piece of answer text. ``step`` is set when the token belongs to a plan step."""

    text: str
    step: str | None = None
    done: bool = False


@dataclass(frozen=True)
class StateChanged:
    state: str
    payload: Any = None
    message: str | None = None


@dataclass(frozen=True)
class SearchResults:
    results: Any
    step: str | None = None


@dataclass(frozen=True)
class OptimizedQuery:
    query: Any


@dataclass(frozen=True)
class RelatedQueries:
    """Related-query text. Chunks append unless ``replace`` is set."""

    chunk: str
    replace: bool = False


@dataclass(frozen=True)
class SelectedModel:
    provider: str
    model: str


@dataclass(frozen=True)
class Plan:
    steps: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Step:
    """Progress for a step name the client has no dedicated handling for."""

    name: str
    result: str = ""
    done: bool = False


@dataclass(frozen=True)
class SegmentDetected:
    id: str
    name: str


@dataclass(frozen=True)
class TriggerDetected:
    id: str
    name: str


@dataclass(frozen=True)
class ProbabilityUpdate:
    value: float
    target: Literal["segment", "trigger"] = "segment"


@dataclass(frozen=True)
class Completed:
    pass


@dataclass(frozen=True)
class Error:
    message: str
    terminal: bool = True


@dataclass(frozen=True)
class RawStatus:
    """Payload that was not JSON; passed through untouched."""

    text: str


DecodedEvent = Union[
    Token,
    StateChanged,
    SearchResults,
    OptimizedQuery,
    RelatedQueries,
    SelectedModel,
    Plan,
    Step,
    SegmentDetected,
    TriggerDetected,
    ProbabilityUpdate,
    Completed,
    Error,
    RawStatus,
]
