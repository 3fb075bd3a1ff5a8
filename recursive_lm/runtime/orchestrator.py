# ABOUTME: Drives one recursive completion run through generate, parse, execute, and recurse iterations.
# ABOUTME: Enforces the run state machine, pre-flight budget checks, iteration ceilings, and stats accounting.

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, Literal

from recursive_lm.runtime.budget_pool import BudgetPool
from recursive_lm.runtime.config import RLMConfig
from recursive_lm.runtime.context_access import ContextView, resolve_context, snippet_context
from recursive_lm.runtime.contracts import ExecutionStats, Message, TerminalResult
from recursive_lm.runtime.errors import (
    DepthExceededError,
    IterationsExhaustedError,
    RLMError,
    SnippetExecutionError,
    SnippetRejectedError,
    TransportFaultError,
)
from recursive_lm.runtime.events import EventSink, NullEventSink, RunEvent, emit
from recursive_lm.runtime.llm_client import ModelClient
from recursive_lm.runtime.llm_loop import dispatch_with_fallback
from recursive_lm.runtime.markers import FinalAnswer, extract_final_var, has_var_marker, parse_final
from recursive_lm.runtime.prompt_registry import (
    render_error_feedback,
    render_no_snippet_feedback,
    render_system_prompt,
    render_user_prompt,
    system_prompt_hash,
)
from recursive_lm.runtime.recursion_gate import RecursionGate
from recursive_lm.runtime.repl_interpreter import ReplInterpreter
from recursive_lm.runtime.snippets import extract_snippet


logger = logging.getLogger(__name__)

RunState = Literal["initialized", "iterating", "executing", "terminated", "failed"]

_ALLOWED_TRANSITIONS: dict[RunState, set[RunState]] = {
    "initialized": {"iterating", "failed"},
    "iterating": {"executing", "terminated", "failed"},
    "executing": {"iterating", "terminated", "failed"},
    "terminated": set(),
    "failed": set(),
}

NO_OUTPUT_FEEDBACK = "(no output)"


class StateTransitionError(RuntimeError):
    pass


class RunStateMachine:
    def __init__(self) -> None:
        self._state: RunState = "initialized"
        self._trajectory: list[RunState] = ["initialized"]

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def trajectory(self) -> list[RunState]:
        return list(self._trajectory)

    def transition(self, next_state: RunState) -> None:
        allowed = _ALLOWED_TRANSITIONS[self._state]
        if next_state not in allowed:
            raise StateTransitionError(f"Invalid transition: {self._state} -> {next_state}.")
        self._state = next_state
        self._trajectory.append(next_state)


@dataclass
class _RunScope:
    iteration: int
    stats: ExecutionStats
    stats_lock: threading.Lock
    machine: RunStateMachine
    started_at: float


class Orchestrator:
    """One completion run at a fixed depth.

    Child runs are new orchestrators built by the recursion gate; they share
    the model client and event sink and draw on a child of this run's budget.
    """

    def __init__(
        self,
        config: RLMConfig,
        *,
        model_client: ModelClient,
        event_sink: EventSink | None = None,
        depth: int = 0,
        budget: BudgetPool | None = None,
    ) -> None:
        self._config = config
        self._client = model_client
        self._event_sink: EventSink = event_sink if event_sink is not None else NullEventSink()
        self._depth = int(depth)
        self._budget = budget or BudgetPool(ceiling=config.cost_budget, pricing=config.model_pricing)
        self._messages: list[Message] = []

    @property
    def config(self) -> RLMConfig:
        return self._config

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def budget(self) -> BudgetPool:
        return self._budget

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def run(self, query: str, context: Any) -> TerminalResult:
        if not isinstance(query, str):
            raise TypeError(f"query must be str, got {type(query).__name__}")
        scope = _RunScope(
            iteration=0,
            stats=ExecutionStats(max_depth_reached=self._depth),
            stats_lock=threading.Lock(),
            machine=RunStateMachine(),
            started_at=time.monotonic(),
        )
        try:
            if self._depth >= self._config.max_depth:
                raise DepthExceededError(depth=self._depth, max_depth=self._config.max_depth)
            return self._run_loop(query, context, scope)
        except RLMError as error:
            with scope.stats_lock:
                scope.stats.wall_clock_ms = _elapsed_ms(scope.started_at)
                error.stats = scope.stats.snapshot()
            if scope.machine.state != "failed":
                scope.machine.transition("failed")
            logger.debug("Run at depth=%d failed: %s", self._depth, error.message)
            self._emit(
                "run_failed",
                {
                    "error_code": error.code,
                    "message": error.message,
                    "iteration": scope.iteration,
                    "stats": error.stats.to_dict(),
                },
            )
            raise

    def _run_loop(self, query: str, context: Any, scope: _RunScope) -> TerminalResult:
        config = self._config
        provider = resolve_context(context)
        view = ContextView(provider)
        self._messages = [
            Message(
                role="system",
                content=render_system_prompt(
                    context_size=provider.size,
                    depth=self._depth,
                    max_depth=config.max_depth,
                ),
            ),
            Message(role="user", content=render_user_prompt(query)),
        ]
        interpreter = ReplInterpreter(
            max_output_chars=config.max_output_chars,
            timeout_sec=config.resolved_snippet_timeout_sec,
        )
        gate = RecursionGate(
            config=config,
            depth=self._depth,
            budget=self._budget,
            stats=scope.stats,
            stats_lock=scope.stats_lock,
            run_child=self._run_child,
            event_sink=self._event_sink,
        )
        capabilities = {
            "context": snippet_context(context),
            "query": query,
            "context_slice": view.slice,
            "context_search": view.search,
        }
        delegations = {
            "recursive_llm": gate.delegate,
            "recursive_llm_batched": gate.delegate_batch,
        }
        model = config.model_for_depth(self._depth)

        for iteration in range(1, config.max_iterations + 1):
            scope.iteration = iteration
            scope.machine.transition("iterating")
            with scope.stats_lock:
                scope.stats.iterations = iteration
            self._emit("iteration_started", {"iteration": iteration, "message_count": len(self._messages)})
            logger.debug("Run depth=%d iteration=%d model=%s", self._depth, iteration, model)

            self._budget.ensure_available()
            self._maybe_warn_budget(iteration)
            response = self._dispatch(model, scope)
            self._maybe_warn_budget(iteration)
            self._emit("snippet_generated", {"iteration": iteration, "response": response})

            # FINAL_VAR next to a snippet names a value that snippet produces.
            runs_first = has_var_marker(response) and extract_snippet(response) is not None
            final = parse_final(response, None if runs_first else interpreter.bindings)
            if final is not None:
                return self._complete(final, scope)

            scope.machine.transition("executing")
            feedback, succeeded = self._execute_snippet(
                response,
                iteration=iteration,
                interpreter=interpreter,
                gate=gate,
                capabilities=capabilities,
                delegations=delegations,
                scope=scope,
            )
            if runs_first and succeeded:
                resolved = extract_final_var(response, interpreter.bindings)
                if resolved is not None:
                    return self._complete(FinalAnswer(answer=resolved, marker="FINAL_VAR"), scope)

            self._messages.append(Message(role="assistant", content=response))
            self._messages.append(Message(role="user", content=feedback))

        raise IterationsExhaustedError(
            max_iterations=config.max_iterations,
            last_message=self._messages[-1].content if self._messages else None,
        )

    def _dispatch(self, model: str, scope: _RunScope) -> str:
        try:
            dispatched = dispatch_with_fallback(
                client=self._client,
                messages=list(self._messages),
                model=model,
                fallback_models=self._config.fallback_models,
                temperature=self._config.temperature,
                timeout_sec=self._config.timeout_sec,
            )
        except TransportFaultError as error:
            with scope.stats_lock:
                scope.stats.llm_calls += max(1, len(error.attempted_models))
            raise
        completion = dispatched.completion
        charge = self._budget.charge(
            model=dispatched.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )
        with scope.stats_lock:
            scope.stats.llm_calls += dispatched.attempt_count
            scope.stats.input_tokens += int(completion.input_tokens)
            scope.stats.output_tokens += int(completion.output_tokens)
            scope.stats.estimated_cost += charge.cost
        if charge.crossed_warning:
            self._emit_budget_warning(scope.iteration)
        return completion.content

    def _execute_snippet(
        self,
        response: str,
        *,
        iteration: int,
        interpreter: ReplInterpreter,
        gate: RecursionGate,
        capabilities: dict[str, Any],
        delegations: dict[str, Any],
        scope: _RunScope,
    ) -> tuple[str, bool]:
        code = extract_snippet(response)
        if code is None:
            logger.debug("Run depth=%d iteration=%d produced no snippet.", self._depth, iteration)
            return render_no_snippet_feedback(), False
        try:
            result = interpreter.execute(code=code, capabilities=capabilities, delegations=delegations)
        except (SnippetRejectedError, SnippetExecutionError) as error:
            _raise_if_fatal(gate)
            with scope.stats_lock:
                scope.stats.repl_errors += 1
            message = error.message
            partial = getattr(error, "partial_output", "")
            if partial:
                message = f"{message}\n\nOutput before the error:\n{partial}"
            logger.debug("Recoverable snippet fault at depth=%d: %s", self._depth, error.message)
            self._emit(
                "recoverable_error",
                {"iteration": iteration, "error_code": error.code, "message": error.message},
            )
            return render_error_feedback(message), False
        _raise_if_fatal(gate)
        output = result.output or NO_OUTPUT_FEEDBACK
        self._emit(
            "snippet_output_produced",
            {"iteration": iteration, "output": output, "truncated": result.truncated},
        )
        return output, True

    def _complete(self, final: FinalAnswer, scope: _RunScope) -> TerminalResult:
        scope.machine.transition("terminated")
        with scope.stats_lock:
            scope.stats.wall_clock_ms = _elapsed_ms(scope.started_at)
            stats = scope.stats.snapshot()
        result = TerminalResult(
            answer=final.answer,
            confidence=final.confidence,
            reasoning=final.reasoning,
            stats=stats,
            state_trajectory=scope.machine.trajectory,
            prompt_template_hash=system_prompt_hash(),
        )
        self._emit(
            "run_completed",
            {
                "answer": final.answer,
                "marker": final.marker,
                "prompt_template_hash": result.prompt_template_hash,
                "stats": stats.to_dict(),
            },
        )
        return result

    def _run_child(
        self,
        *,
        config: RLMConfig,
        depth: int,
        budget: BudgetPool,
        query: str,
        context: Any,
    ) -> TerminalResult:
        child = Orchestrator(
            config,
            model_client=self._client,
            event_sink=self._event_sink,
            depth=depth,
            budget=budget,
        )
        return child.run(query, context)

    def _maybe_warn_budget(self, iteration: int) -> None:
        if self._budget.claim_warning():
            self._emit_budget_warning(iteration)

    def _emit_budget_warning(self, iteration: int) -> None:
        ceiling = self._budget.ceiling
        spent = self._budget.spent
        logger.warning(
            "Cost budget warning at depth=%d: $%.4f spent of $%.4f.", self._depth, spent, ceiling or 0.0
        )
        self._emit(
            "budget_warning",
            {
                "iteration": iteration,
                "spent": spent,
                "ceiling": ceiling,
                "remaining": self._budget.remaining(),
            },
        )

    def _emit(self, kind: str, payload: dict[str, Any]) -> None:
        emit(self._event_sink, RunEvent(kind=kind, depth=self._depth, payload=payload))  # type: ignore[arg-type]


def _raise_if_fatal(gate: RecursionGate) -> None:
    fatal = gate.fatal_error
    if fatal is not None:
        raise fatal


def _elapsed_ms(started_at: float) -> int:
    return int((time.monotonic() - started_at) * 1000)


def run_completion(
    query: str,
    context: Any,
    *,
    config: RLMConfig,
    model_client: ModelClient,
    event_sink: EventSink | None = None,
) -> TerminalResult:
    return Orchestrator(config, model_client=model_client, event_sink=event_sink).run(query, context)
