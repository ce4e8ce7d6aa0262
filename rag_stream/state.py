"""rag_stream/state.py"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable
from typing import Any

from rag_stream.decoder import safe_json_parse
from rag_stream.events import (
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
from rag_stream.types import (
    AdvancedAutoquery,
    Interaction,
    InteractionStatus,
    Message,
    Segment,
    SelectedLLM,
    StepExecution,
)

_log = logging.getLogger("rag_stream")

StateCallback = Callable[[list[Interaction]], None]

AUTOQUERY_PREFIX = "advanced_autoquery_"


class ConversationState:
    """Owns the transcript and the interaction list for one session.

    Single writer protocol: every mutation of ``messages``/``state`` goes
    through a method here, and every mutation is followed by a notification
    carrying a deep copy of ``state``. Events aimed at an interaction that has
    already reached a terminal status are ignored.
    """

    def __init__(
        self,
        initial_messages: list[Message] | None = None,
        on_state_change: StateCallback | None = None,
        on_end: StateCallback | None = None,
    ) -> None:
        self.messages: list[Message] = list(initial_messages or [])
        self.state: list[Interaction] = []
        self.on_state_change = on_state_change
        self.on_end = on_end
        # assistant message paired with each interaction, same order as state
        self._replies: list[Message] = []
        self._seen_verbose: set[str] = set()
        self._handlers: dict[type, Callable[[Interaction, Any], bool]] = {
            Token: self._on_token,
            StateChanged: self._on_state_changed,
            SearchResults: self._on_search_results,
            OptimizedQuery: self._on_optimized_query,
            RelatedQueries: self._on_related,
            SelectedModel: self._on_selected_model,
            Plan: self._on_plan,
            Step: self._on_step,
            SegmentDetected: self._on_segment,
            TriggerDetected: self._on_trigger,
            ProbabilityUpdate: self._on_probability,
            Completed: self._on_completed,
            Error: self._on_error,
            RawStatus: self._on_raw_status,
        }

    # --- Lifecycle ---

    def begin(self, interaction_id: str, query: str, related: bool = False, planned: bool = False) -> Interaction:
        """Open a new interaction with its user/assistant message pair.

        The returned object is the handle for all later transitions; it stays
        valid (and simply stops matching) once the interaction is removed.
        """
        reply = Message(role="assistant", content="")
        self.messages.append(Message(role="user", content=query))
        self.messages.append(reply)
        interaction = Interaction(
            id=interaction_id,
            query=query,
            related="" if related else None,
            status=InteractionStatus.STREAMING,
            current_step="starting",
            planned=planned,
        )
        self._seen_verbose = set()
        self.state.append(interaction)
        self._replies.append(reply)
        self.notify()
        return interaction

    def apply(self, interaction: Interaction, event: DecodedEvent) -> bool:
        """Fold *event* into *interaction*. Returns True if anything changed."""
        index = self._locate(interaction)
        if index is None:
            _log.debug("Ignoring %s for removed interaction %s", type(event).__name__, interaction.id)
            return False
        if interaction.status.terminal:
            _log.debug("Ignoring %s for %s interaction %s", type(event).__name__, interaction.status.value, interaction.id)
            return False
        handler = self._handlers[type(event)]
        changed = handler(interaction, event)
        if changed:
            self._replies[index].content = interaction.response
            self.notify()
            if interaction.status.terminal:
                self._fire_end()
        return changed

    def complete(self, interaction: Interaction) -> bool:
        return self.apply(interaction, Completed())

    def fail(self, interaction: Interaction, message: str) -> bool:
        return self.apply(interaction, Error(message, terminal=True))

    def abort(self, interaction: Interaction) -> bool:
        if not self.is_active(interaction):
            return False
        interaction.aborted = True
        interaction.loading = False
        interaction.status = InteractionStatus.ABORTED
        self.notify()
        self._fire_end()
        return True

    def is_active(self, interaction: Interaction) -> bool:
        return self._locate(interaction) is not None and not interaction.status.terminal

    def pop_last(self) -> Interaction:
        """Remove the last interaction and its user/assistant message pair."""
        interaction = self.state.pop()
        reply = self._replies.pop()
        for i in range(len(self.messages) - 1, 0, -1):
            if self.messages[i] is reply:
                del self.messages[i - 1 : i + 1]
                break
        self.notify()
        return interaction

    def clear(self) -> None:
        self.messages = []
        self.state = []
        self._replies = []
        self.notify()

    def _locate(self, interaction: Interaction) -> int | None:
        for i in range(len(self.state) - 1, -1, -1):
            if self.state[i] is interaction:
                return i
        return None

    # --- Notification ---

    def snapshot(self) -> list[Interaction]:
        return copy.deepcopy(self.state)

    def notify(self) -> None:
        if self.on_state_change is not None:
            _call_observer(self.on_state_change, self.snapshot())

    def _fire_end(self) -> None:
        if self.on_end is not None:
            _call_observer(self.on_end, self.snapshot())

    # --- Transitions ---

    def _on_token(self, interaction: Interaction, event: Token) -> bool:
        interaction.response += event.text
        if event.step is not None:
            step = interaction.plan_execution.setdefault(event.step, StepExecution())
            step.result += event.text
            step.done = event.done
        return True

    def _on_search_results(self, interaction: Interaction, event: SearchResults) -> bool:
        interaction.sources = event.results
        if event.step is not None and event.step in interaction.plan_execution:
            step = interaction.plan_execution[event.step]
            step.result = event.results if isinstance(event.results, str) else json.dumps(event.results)
            step.done = True
        return True

    def _on_optimized_query(self, interaction: Interaction, event: OptimizedQuery) -> bool:
        interaction.optimized_query = event.query
        return True

    def _on_related(self, interaction: Interaction, event: RelatedQueries) -> bool:
        if event.replace:
            interaction.related = event.chunk
            return True
        if interaction.related is None:
            # related questions were not requested for this interaction
            return False
        interaction.related += event.chunk
        return True

    def _on_selected_model(self, interaction: Interaction, event: SelectedModel) -> bool:
        interaction.selected_llm = SelectedLLM(provider=event.provider, model=event.model)
        return True

    def _on_plan(self, interaction: Interaction, event: Plan) -> bool:
        interaction.plan = list(event.steps)
        interaction.plan_execution = {
            str(step["step"]): StepExecution(instruction=str(step.get("description", "")))
            for step in event.steps
        }
        return True

    def _on_step(self, interaction: Interaction, event: Step) -> bool:
        step = interaction.plan_execution.setdefault(event.name, StepExecution())
        step.result += event.result
        step.done = event.done
        interaction.current_step = event.name
        return True

    def _on_segment(self, interaction: Interaction, event: SegmentDetected) -> bool:
        interaction.segment = Segment(id=event.id, name=event.name)
        return True

    def _on_trigger(self, interaction: Interaction, event: TriggerDetected) -> bool:
        interaction.trigger = Segment(id=event.id, name=event.name)
        return True

    def _on_probability(self, interaction: Interaction, event: ProbabilityUpdate) -> bool:
        target = interaction.segment if event.target == "segment" else interaction.trigger
        if target is None:
            return False
        target.probability = event.value
        return True

    def _on_completed(self, interaction: Interaction, event: Completed) -> bool:
        interaction.loading = False
        interaction.current_step = "completed"
        interaction.status = InteractionStatus.COMPLETED
        return True

    def _on_error(self, interaction: Interaction, event: Error) -> bool:
        interaction.error = True
        interaction.error_message = event.message
        if event.terminal:
            interaction.loading = False
            interaction.status = InteractionStatus.ERRORED
        return True

    def _on_raw_status(self, interaction: Interaction, event: RawStatus) -> bool:
        _log.debug("Raw status for interaction %s: %.200r", interaction.id, event.text)
        return False

    def _on_state_changed(self, interaction: Interaction, event: StateChanged) -> bool:
        interaction.current_step = event.state
        if event.state.startswith(AUTOQUERY_PREFIX) and isinstance(event.payload, dict):
            self._apply_autoquery(interaction, event.state[len(AUTOQUERY_PREFIX) :], event.payload)
        return True

    def _apply_autoquery(self, interaction: Interaction, stage: str, data: dict[str, Any]) -> None:
        trace = interaction.advanced_autoquery
        if trace is None:
            trace = interaction.advanced_autoquery = AdvancedAutoquery()

        if stage == "query_optimized" and data.get("optimized_queries"):
            trace.optimized_queries = data["optimized_queries"]
            self._set_verbose(interaction, "\nAlso, ".join(str(q) for q in trace.optimized_queries))
        elif stage == "properties_selected" and data.get("selected_properties"):
            trace.selected_properties = data["selected_properties"]
            self._set_verbose(interaction, f"Filtering by {', '.join(_selected_property_names(trace.selected_properties))}")
        elif stage == "combine_queries" and data.get("queries_and_properties"):
            trace.queries_and_properties = data["queries_and_properties"]
        elif stage == "tracked_queries_generated" and data.get("tracked_queries"):
            trace.tracked_queries = data["tracked_queries"]
        elif stage == "search_results" and data.get("search_results"):
            trace.search_results = data["search_results"]
            self._set_verbose(interaction, _search_results_summary(trace.search_results))
        elif stage == "completed" and data.get("results"):
            trace.results = data["results"]
            interaction.current_step_verbose = None

    def _set_verbose(self, interaction: Interaction, message: str) -> None:
        if not message or message in self._seen_verbose:
            return
        self._seen_verbose.add(message)
        interaction.current_step_verbose = message


def _selected_property_names(selected: list[dict[str, Any]]) -> list[str]:
    """Flatten ``[{collection: {selected_properties: [{property: ...}]}}]`` into property names."""
    names: list[str] = []
    for entry in selected:
        if not isinstance(entry, dict):
            continue
        for value in entry.values():
            if not isinstance(value, dict):
                continue
            for prop in value.get("selected_properties") or []:
                if isinstance(prop, dict) and "property" in prop:
                    names.append(str(prop["property"]))
    return names


def _search_results_summary(search_results: list[dict[str, Any]]) -> str:
    count = 0
    terms: list[str] = []
    for entry in search_results:
        if not isinstance(entry, dict):
            continue
        results = entry.get("results") or []
        if results and isinstance(results[0], dict):
            count += int(results[0].get("count", 0) or 0)
        parsed = safe_json_parse(entry.get("generated_query"))
        if isinstance(parsed, dict) and parsed.get("term"):
            terms.append(str(parsed["term"]))
    plural = "" if count == 1 else "s"
    return f'Found {count} result{plural} for "{", ".join(terms)}"'


def _call_observer(callback: StateCallback, state: list[Interaction]) -> None:
    try:
        callback(state)
    except Exception:
        _log.debug("state observer %r failed", callback, exc_info=True)
