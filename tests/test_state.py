"""Tests for rag_stream.state.ConversationState."""

from __future__ import annotations

from rag_stream.events import (
    Completed,
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
from rag_stream.state import ConversationState
from rag_stream.types import InteractionStatus, Message


def started(**kwargs):
    conversation = ConversationState(**kwargs)
    interaction = conversation.begin("i-1", "hello")
    return conversation, interaction


class TestBegin:
    def test_appends_message_pair_and_interaction(self):
        conversation, interaction = started()
        assert [(m.role, m.content) for m in conversation.messages] == [("user", "hello"), ("assistant", "")]
        assert conversation.state == [interaction]
        assert interaction.loading is True
        assert interaction.status is InteractionStatus.STREAMING
        assert interaction.related is None

    def test_related_requested_starts_empty_string(self):
        conversation = ConversationState()
        interaction = conversation.begin("i-1", "q", related=True)
        assert interaction.related == ""

    def test_initial_messages_are_kept(self):
        history = [Message("user", "earlier"), Message("assistant", "reply")]
        conversation = ConversationState(initial_messages=history)
        conversation.begin("i-1", "next")
        assert len(conversation.messages) == 4
        assert conversation.messages[0].content == "earlier"

    def test_begin_notifies(self, recorder):
        started(on_state_change=recorder)
        assert len(recorder.snapshots) == 1
        assert recorder.snapshots[0][0].query == "hello"


class TestTokens:
    def test_tokens_accumulate_in_order(self):
        conversation, interaction = started()
        for text in ("a", "b", "c"):
            conversation.apply(interaction, Token(text))
        assert interaction.response == "abc"
        assert conversation.messages[-1].content == "abc"

    def test_step_token_tracks_plan_execution(self):
        conversation, interaction = started()
        conversation.apply(interaction, Token("4", step="GIVE_REPLY", done=True))
        assert interaction.plan_execution["GIVE_REPLY"].result == "4"
        assert interaction.plan_execution["GIVE_REPLY"].done is True


class TestTransitions:
    def test_search_results_replace_sources(self):
        conversation, interaction = started()
        conversation.apply(interaction, SearchResults([1]))
        conversation.apply(interaction, SearchResults([2, 3]))
        assert interaction.sources == [2, 3]

    def test_optimized_query_and_selected_model(self):
        conversation, interaction = started()
        conversation.apply(interaction, OptimizedQuery({"term": "x"}))
        conversation.apply(interaction, SelectedModel("openai", "gpt-4o"))
        assert interaction.optimized_query == {"term": "x"}
        assert interaction.selected_llm.model == "gpt-4o"

    def test_related_chunks_append_until_replaced(self):
        conversation = ConversationState()
        interaction = conversation.begin("i-1", "q", related=True)
        conversation.apply(interaction, RelatedQueries('["a",'))
        conversation.apply(interaction, RelatedQueries(' "b"]'))
        assert interaction.related == '["a", "b"]'
        conversation.apply(interaction, RelatedQueries('["c"]', replace=True))
        assert interaction.related == '["c"]'

    def test_related_chunks_ignored_when_not_requested(self):
        conversation, interaction = started()
        assert conversation.apply(interaction, RelatedQueries('["a"]')) is False
        assert interaction.related is None

    def test_plan_seeds_execution_then_steps_fill_it(self):
        conversation, interaction = started()
        plan = [
            {"step": "PERFORM_ORAMA_SEARCH", "description": "Search the docs"},
            {"step": "GIVE_REPLY", "description": "Answer"},
        ]
        conversation.apply(interaction, Plan(plan))
        assert interaction.plan == plan
        assert interaction.plan_execution["PERFORM_ORAMA_SEARCH"].instruction == "Search the docs"

        conversation.apply(interaction, SearchResults([{"id": "1"}], step="PERFORM_ORAMA_SEARCH"))
        assert interaction.plan_execution["PERFORM_ORAMA_SEARCH"].done is True
        assert interaction.plan_execution["PERFORM_ORAMA_SEARCH"].result == '[{"id": "1"}]'

    def test_unknown_step_is_recorded(self):
        conversation, interaction = started()
        conversation.apply(interaction, Step("CALCULATE", "2", False))
        conversation.apply(interaction, Step("CALCULATE", "5", True))
        assert interaction.plan_execution["CALCULATE"].result == "25"
        assert interaction.plan_execution["CALCULATE"].done is True
        assert interaction.current_step == "CALCULATE"

    def test_segment_and_probability(self):
        conversation, interaction = started()
        conversation.apply(interaction, SegmentDetected("s1", "Buyer"))
        conversation.apply(interaction, ProbabilityUpdate(0.7))
        assert interaction.segment.probability == 0.7

    def test_probability_without_segment_is_ignored(self):
        conversation, interaction = started()
        assert conversation.apply(interaction, ProbabilityUpdate(0.5)) is False
        assert interaction.segment is None

    def test_trigger_kept_separately(self):
        conversation, interaction = started()
        conversation.apply(interaction, SegmentDetected("s1", "Buyer"))
        conversation.apply(interaction, TriggerDetected("t1", "Discount"))
        conversation.apply(interaction, ProbabilityUpdate(0.4, target="trigger"))
        assert interaction.segment.name == "Buyer"
        assert interaction.segment.probability is None
        assert interaction.trigger.probability == 0.4

    def test_raw_status_changes_nothing(self, recorder):
        conversation, interaction = started(on_state_change=recorder)
        assert conversation.apply(interaction, RawStatus("ping")) is False
        assert len(recorder.snapshots) == 1


class TestTerminalStates:
    def test_completed(self):
        conversation, interaction = started()
        conversation.apply(interaction, Token("done"))
        conversation.apply(interaction, Completed())
        assert interaction.loading is False
        assert interaction.status is InteractionStatus.COMPLETED
        assert interaction.current_step == "completed"

    def test_events_after_completion_ignored(self):
        conversation, interaction = started()
        conversation.apply(interaction, Token("final"))
        conversation.complete(interaction)
        assert conversation.apply(interaction, Token(" extra")) is False
        assert interaction.response == "final"
        assert conversation.messages[-1].content == "final"

    def test_terminal_error(self):
        conversation, interaction = started()
        conversation.fail(interaction, "Failed to reach server")
        assert interaction.error is True
        assert interaction.loading is False
        assert interaction.error_message == "Failed to reach server"
        assert interaction.status is InteractionStatus.ERRORED

    def test_non_terminal_error_keeps_streaming(self):
        conversation, interaction = started()
        conversation.apply(interaction, Error("retrying", terminal=False))
        assert interaction.error is True
        assert interaction.loading is True
        conversation.apply(interaction, Token("ok"))
        assert interaction.response == "ok"

    def test_abort(self):
        conversation, interaction = started()
        conversation.apply(interaction, Token("par"))
        assert conversation.abort(interaction) is True
        assert interaction.aborted is True
        assert interaction.loading is False
        assert interaction.response == "par"
        assert conversation.abort(interaction) is False

    def test_on_end_fires_once(self):
        ends = []
        conversation, interaction = started(on_end=ends.append)
        conversation.complete(interaction)
        conversation.abort(interaction)
        assert len(ends) == 1
        assert ends[0][0].status is InteractionStatus.COMPLETED


class TestAutoquery:
    def test_trace_and_verbose_messages(self):
        conversation, interaction = started()
        conversation.apply(
            interaction,
            StateChanged("advanced_autoquery_query_optimized", payload={"optimized_queries": ["red shoes", "sneakers"]}),
        )
        assert interaction.advanced_autoquery.optimized_queries == ["red shoes", "sneakers"]
        assert interaction.current_step_verbose == "red shoes\nAlso, sneakers"
        assert interaction.current_step == "advanced_autoquery_query_optimized"

        selected = [{"products": {"selected_properties": [{"property": "color"}, {"property": "size"}]}}]
        conversation.apply(interaction, StateChanged("advanced_autoquery_properties_selected", payload={"selected_properties": selected}))
        assert interaction.current_step_verbose == "Filtering by color, size"

        search = [{"results": [{"count": 3}], "generated_query": '{"term": "red shoes"}'}]
        conversation.apply(interaction, StateChanged("advanced_autoquery_search_results", payload={"search_results": search}))
        assert interaction.current_step_verbose == 'Found 3 results for "red shoes"'

        conversation.apply(interaction, StateChanged("advanced_autoquery_completed", payload={"results": [{"id": 1}]}))
        assert interaction.advanced_autoquery.results == [{"id": 1}]
        assert interaction.current_step_verbose is None

    def test_duplicate_verbose_message_not_repeated(self):
        conversation, interaction = started()
        payload = {"optimized_queries": ["q"]}
        conversation.apply(interaction, StateChanged("advanced_autoquery_query_optimized", payload=payload))
        conversation.apply(interaction, StateChanged("advanced_autoquery_completed", payload={"results": [1]}))
        conversation.apply(interaction, StateChanged("advanced_autoquery_query_optimized", payload=payload))
        assert interaction.current_step_verbose is None


class TestNotifications:
    def test_snapshots_are_copies(self, recorder):
        conversation, interaction = started(on_state_change=recorder)
        conversation.apply(interaction, Token("a"))
        snapshot = recorder.snapshots[-1]
        snapshot[0].response = "tampered"
        snapshot.clear()
        assert interaction.response == "a"
        assert conversation.state == [interaction]

    def test_every_change_notifies(self, recorder):
        conversation, interaction = started(on_state_change=recorder)
        conversation.apply(interaction, Token("a"))
        conversation.apply(interaction, Token("b"))
        conversation.complete(interaction)
        assert [s[0].response for s in recorder.snapshots] == ["", "a", "ab", "ab"]

    def test_failing_observer_does_not_break_state(self):
        def explode(state):
            raise RuntimeError("observer bug")

        conversation, interaction = started(on_state_change=explode)
        conversation.apply(interaction, Token("x"))
        assert interaction.response == "x"


class TestRemoval:
    def test_pop_last_notifies(self, recorder):
        conversation, interaction = started(on_state_change=recorder)
        conversation.complete(interaction)
        conversation.pop_last()
        assert recorder.snapshots[-1] == []

    def test_pop_last_removes_pair(self):
        conversation = ConversationState()
        first = conversation.begin("i-1", "one")
        conversation.complete(first)
        conversation.begin("i-2", "two")
        popped = conversation.pop_last()
        assert popped.id == "i-2"
        assert conversation.state == [first]
        assert [m.content for m in conversation.messages] == ["one", ""]

    def test_events_for_removed_interaction_ignored(self):
        conversation, interaction = started()
        conversation.pop_last()
        newer = conversation.begin("i-2", "hello")
        assert conversation.apply(interaction, Token("stale")) is False
        assert newer.response == ""
        assert conversation.messages[-1].content == ""

    def test_clear(self, recorder):
        conversation, interaction = started(on_state_change=recorder)
        conversation.clear()
        assert conversation.messages == []
        assert conversation.state == []
        assert recorder.snapshots[-1] == []
        assert conversation.is_active(interaction) is False
