from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional

Role = Literal["system", "assistant", "user"]


class InteractionStatus(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (InteractionStatus.COMPLETED, InteractionStatus.ERRORED, InteractionStatus.ABORTED)


@dataclass
class Message:
    role: Role
    content: str = ""

    def to_dict(self):
        return {"role": self.role, "content": self.content}


@dataclass
class Segment:
    """A detected user segment or trigger."""

    id: str
    name: str
    probability: Optional[float] = None


@dataclass
class StepExecution:
    instruction: str = ""
    result: str = ""
    done: bool = False


@dataclass
class SelectedLLM:
    provider: str
    model: str


@dataclass
class AdvancedAutoquery:
    optimized_queries: Optional[list[str]] = None
    selected_properties: Optional[list[dict[str, Any]]] = None
    queries_and_properties: Optional[list[dict[str, Any]]] = None
    tracked_queries: Optional[list[dict[str, Any]]] = None
    search_results: Optional[list[dict[str, Any]]] = None
    results: Optional[list[dict[str, Any]]] = None


########################################################
########   One question/answer exchange   #########
########################################################
@dataclass
class Interaction:
    id: str
    query: str
    response: str = ""
    sources: Any = None
    loading: bool = True
    error: bool = False
    error_message: Optional[str] = None
    aborted: bool = False
    related: Optional[str] = None
    status: InteractionStatus = InteractionStatus.IDLE

    # Observability sub-state
    optimized_query: Any = None
    current_step: Optional[str] = None
    current_step_verbose: Optional[str] = None
    selected_llm: Optional[SelectedLLM] = None
    advanced_autoquery: Optional[AdvancedAutoquery] = None
    segment: Optional[Segment] = None
    trigger: Optional[Segment] = None

    # Planned answers only
    planned: bool = False
    plan: Optional[list[dict[str, Any]]] = None
    plan_execution: dict[str, StepExecution] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
