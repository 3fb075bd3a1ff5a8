# ABOUTME: Validates the single-run completion loop against scripted model replies.
# ABOUTME: Covers termination, recoverable snippet faults, budget and iteration ceilings, fallback, and events.

from __future__ import annotations

import pytest

from recursive_lm.runtime.config import RLMConfig
from recursive_lm.runtime.errors import (
    BudgetExceededError,
    DepthExceededError,
    IterationsExhaustedError,
    TransportFaultError,
)
from recursive_lm.runtime.events import CollectingEventSink
from recursive_lm.runtime.orchestrator import Orchestrator, RunStateMachine, StateTransitionError, run_completion
from recursive_lm.runtime.prompt_registry import get_prompt_definition_by_hash


def _config(**overrides: object) -> RLMConfig:
    values: dict[str, object] = {"model": "gpt-4o", "max_iterations": 5}
    values.update(overrides)
    return RLMConfig(**values)  # type: ignore[arg-type]


def test_state_machine_rejects_terminating_before_iterating() -> None:
    machine = RunStateMachine()

    with pytest.raises(StateTransitionError):
        machine.transition("terminated")
    machine.transition("iterating")
    machine.transition("executing")
    machine.transition("iterating")
    machine.transition("terminated")
    assert machine.trajectory == ["initialized", "iterating", "executing", "iterating", "terminated"]


def test_print_then_final_terminates_on_second_iteration(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nprint(context[:5])\n```", 'FINAL("42")'])
    sink = CollectingEventSink()
    orchestrator = Orchestrator(_config(), model_client=client, event_sink=sink)

    result = orchestrator.run("What is the answer?", "hello world")

    assert result.answer == "42"
    assert result.confidence is None
    assert result.stats.iterations == 2
    assert result.stats.llm_calls == 2
    assert result.stats.max_depth_reached == 0
    assert result.stats.total_tokens == 300
    assert result.stats.estimated_cost == pytest.approx(2 * 0.00075)
    assert result.state_trajectory == ["initialized", "iterating", "executing", "iterating", "terminated"]
    assert [message.role for message in orchestrator.messages] == ["system", "user", "assistant", "user"]
    assert orchestrator.messages[-1].content == "hello"
    assert client.calls[1]["messages"][-1].content == "hello"
    assert sink.kinds() == [
        "iteration_started",
        "snippet_generated",
        "snippet_output_produced",
        "iteration_started",
        "snippet_generated",
        "run_completed",
    ]


def test_rejected_snippet_is_folded_back_and_run_continues(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nimport os\nprint(os.getcwd())\n```", 'FINAL("recovered")'])
    sink = CollectingEventSink()
    orchestrator = Orchestrator(_config(), model_client=client, event_sink=sink)

    result = orchestrator.run("q", "ctx")

    assert result.answer == "recovered"
    assert result.stats.repl_errors == 1
    feedback = orchestrator.messages[-1].content
    assert feedback.startswith("REPL Error: Forbidden pattern detected")
    assert sink.of_kind("recoverable_error")[0].payload["error_code"] == "SNIPPET_REJECTED"


def test_reply_without_code_or_marker_is_a_noop_iteration(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["I am thinking about it", 'FINAL("x")'])
    orchestrator = Orchestrator(_config(), model_client=client)

    result = orchestrator.run("q", "ctx")

    assert result.stats.iterations == 2
    assert result.stats.repl_errors == 0
    assert orchestrator.messages[-1].content.startswith("No code block or FINAL marker")


def test_final_var_is_resolved_after_the_same_reply_runs(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nanswer = context.upper()\n```\nFINAL_VAR(answer)"])

    result = run_completion("Shout it", "abc", config=_config(), model_client=client)

    assert result.answer == "ABC"
    assert result.stats.iterations == 1
    assert result.state_trajectory[-2:] == ["executing", "terminated"]


def test_final_var_reads_the_value_its_own_snippet_just_updated(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(
        [
            "```python\ntotal = 1\n```",
            "```python\ntotal = total + 41\n```\nFINAL_VAR(total)",
        ]
    )

    result = run_completion("Sum it", "ctx", config=_config(), model_client=client)

    assert result.answer == "42"
    assert result.stats.iterations == 2


def test_final_var_is_not_taken_from_a_snippet_that_failed(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(
        [
            "```python\ntotal = 1\n```",
            "```python\ntotal = total + missing\n```\nFINAL_VAR(total)",
            'FINAL("gave up")',
        ]
    )
    orchestrator = Orchestrator(_config(), model_client=client)

    result = orchestrator.run("Sum it", "ctx")

    assert result.answer == "gave up"
    assert result.stats.repl_errors == 1
    assert "NameError" in orchestrator.messages[-1].content


def test_final_var_inside_fenced_block_terminates_cleanly(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nx = 'done'\nFINAL_VAR(x)\n```"])
    sink = CollectingEventSink()

    result = run_completion("Finish", "ctx", config=_config(), model_client=client, event_sink=sink)

    assert result.answer == "done"
    assert result.stats.repl_errors == 0
    assert sink.of_kind("recoverable_error") == []


def test_completed_run_records_its_system_prompt_hash(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(['FINAL("ok")'])
    sink = CollectingEventSink()

    result = run_completion("q", "ctx", config=_config(), model_client=client, event_sink=sink)

    prompt = get_prompt_definition_by_hash(result.prompt_template_hash or "")
    assert prompt.prompt_id == "completion_system_v1"
    assert sink.of_kind("run_completed")[0].payload["prompt_template_hash"] == result.prompt_template_hash
    assert result.to_dict()["prompt_template_hash"] == result.prompt_template_hash


def test_final_with_confidence_is_returned_with_reasoning(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(['FINAL_WITH_CONFIDENCE({"answer": "blue", "confidence": 1.4, "reasoning": "seen twice"})'])

    result = run_completion("Color?", "the sky is blue", config=_config(), model_client=client)

    assert (result.answer, result.confidence, result.reasoning) == ("blue", 1.0, "seen twice")


def test_budget_ceiling_below_one_call_fails_before_second_dispatch(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nprint(1)\n```", 'FINAL("never")'])
    sink = CollectingEventSink()
    orchestrator = Orchestrator(_config(cost_budget=0.0005), model_client=client, event_sink=sink)

    with pytest.raises(BudgetExceededError) as exc_info:
        orchestrator.run("q", "ctx")

    assert len(client.calls) == 1
    assert exc_info.value.stats is not None
    assert exc_info.value.stats.llm_calls == 1
    assert exc_info.value.stats.estimated_cost == pytest.approx(0.00075)
    assert len(sink.of_kind("budget_warning")) == 1
    assert sink.kinds()[-1] == "run_failed"


def test_iteration_ceiling_raises_with_last_message(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nprint('one')\n```", "```python\nprint('two')\n```"])

    with pytest.raises(IterationsExhaustedError) as exc_info:
        Orchestrator(_config(max_iterations=2), model_client=client).run("q", "ctx")

    assert exc_info.value.last_message == "two"
    assert exc_info.value.stats is not None
    assert exc_info.value.stats.iterations == 2


def test_fallback_model_absorbs_transport_fault_and_counts_both_attempts(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client([TransportFaultError("primary down", model="gpt-4o"), 'FINAL("ok")'])

    result = run_completion("q", "ctx", config=_config(fallback_models=("gpt-4o-mini",)), model_client=client)

    assert result.answer == "ok"
    assert result.stats.llm_calls == 2
    assert [call["model"] for call in client.calls] == ["gpt-4o", "gpt-4o-mini"]


def test_transport_fault_without_fallback_fails_the_run_with_stats(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client([TransportFaultError("down", model="gpt-4o")])
    sink = CollectingEventSink()

    with pytest.raises(TransportFaultError) as exc_info:
        run_completion("q", "ctx", config=_config(), model_client=client, event_sink=sink)

    assert exc_info.value.stats is not None
    assert exc_info.value.stats.llm_calls == 1
    assert sink.of_kind("run_failed")[0].payload["error_code"] == "TRANSPORT_FAULT"


def test_run_at_max_depth_is_refused_without_dispatch(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(['FINAL("unused")'])

    with pytest.raises(DepthExceededError):
        Orchestrator(_config(max_depth=2), model_client=client, depth=2).run("q", "ctx")

    assert client.calls == []


def test_snippet_timeout_is_recoverable(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nwhile True:\n    pass\n```", 'FINAL("after timeout")'])
    sink = CollectingEventSink()

    result = run_completion("q", "ctx", config=_config(snippet_timeout_sec=0.3), model_client=client, event_sink=sink)

    assert result.answer == "after timeout"
    assert result.stats.repl_errors == 1
    assert sink.of_kind("recoverable_error")[0].payload["error_code"] == "SNIPPET_TIMEOUT"


def test_estimated_cost_sums_every_dispatch(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(["```python\nprint(1)\n```", "```python\nprint(2)\n```", 'FINAL("done")'])

    result = run_completion("q", "ctx", config=_config(), model_client=client)

    assert result.stats.llm_calls == 3
    assert result.stats.estimated_cost == pytest.approx(3 * 0.00075)


class _ListBackedProvider:
    def __init__(self, lines: list[str]) -> None:
        self._text = "\n".join(lines)

    @property
    def size(self) -> int:
        return len(self._text)

    def slice(self, start: int, end: int) -> str:
        return self._text[start:end]


def test_provider_context_is_explored_through_view(scripted_client) -> None:  # noqa: ANN001
    client = scripted_client(
        [
            "```python\nprint(context[0:5], len(context), context_search(r'id=\\d+'))\n```",
            'FINAL("found")',
        ]
    )
    orchestrator = Orchestrator(_config(), model_client=client)

    result = orchestrator.run("Find ids", _ListBackedProvider(["alpha id=1", "beta id=22"]))

    assert result.answer == "found"
    assert orchestrator.messages[-1].content == "alpha 21 ['id=1', 'id=22']"
    assert "21 characters" in orchestrator.messages[0].content
