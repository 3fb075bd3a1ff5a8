# ABOUTME: Bounds recursion depth and runs child completions for snippet-issued sub-queries.
# ABOUTME: Hands each child a budget carved from the live parent pool and folds child stats back under a lock.

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
import threading
from typing import Any, Callable, Mapping, Sequence

from recursive_lm.runtime.budget_pool import BudgetPool
from recursive_lm.runtime.config import RLMConfig
from recursive_lm.runtime.context_access import context_size
from recursive_lm.runtime.contracts import ExecutionStats, TerminalResult
from recursive_lm.runtime.errors import RLMError, TransportFaultError
from recursive_lm.runtime.events import EventSink, RunEvent, emit


logger = logging.getLogger(__name__)

ChildRunner = Callable[..., TerminalResult]


def _normalize_request(request: Any, *, index: int) -> tuple[str, Any]:
    if isinstance(request, Mapping):
        sub_query = request.get("query", request.get("sub_query"))
        sub_context = request.get("context", request.get("sub_context"))
    elif isinstance(request, (list, tuple)) and len(request) == 2:
        sub_query, sub_context = request
    else:
        raise TypeError(
            f"recursive_llm_batched request {index} must be a (sub_query, sub_context) pair."
        )
    if not isinstance(sub_query, str):
        raise TypeError(f"recursive_llm_batched request {index} needs a string sub_query.")
    if sub_context is None:
        raise TypeError(f"recursive_llm_batched request {index} needs a sub_context.")
    return sub_query, sub_context


class RecursionGate:
    def __init__(
        self,
        *,
        config: RLMConfig,
        depth: int,
        budget: BudgetPool,
        stats: ExecutionStats,
        stats_lock: threading.Lock,
        run_child: ChildRunner,
        event_sink: EventSink | None = None,
    ) -> None:
        self._config = config
        self._depth = int(depth)
        self._budget = budget
        self._stats = stats
        self._stats_lock = stats_lock
        self._run_child = run_child
        self._event_sink = event_sink
        self._fatal_lock = threading.Lock()
        self._fatal_error: RLMError | None = None

    @property
    def fatal_error(self) -> RLMError | None:
        with self._fatal_lock:
            return self._fatal_error

    def can_delegate(self) -> bool:
        return self._depth + 1 < self._config.max_depth

    def delegate(self, sub_query: str, sub_context: Any) -> str:
        if not self.can_delegate():
            return f"Max recursion depth ({self._config.max_depth}) reached. Cannot process sub-query."

        child_depth = self._depth + 1
        child_budget = self._budget.spawn_child()
        child_config = self._config.child_config(cost_budget=child_budget.ceiling)
        emit(
            self._event_sink,
            RunEvent(
                kind="recursive_call_started",
                depth=self._depth,
                payload={
                    "child_depth": child_depth,
                    "sub_query": str(sub_query),
                    "sub_context_size": context_size(sub_context),
                    "child_budget": child_budget.ceiling,
                },
            ),
        )
        logger.debug("Delegating sub-query at depth=%d to depth=%d.", self._depth, child_depth)
        try:
            result = self._run_child(
                config=child_config,
                depth=child_depth,
                budget=child_budget,
                query=str(sub_query),
                context=sub_context,
            )
        except RLMError as error:
            if error.stats is not None:
                self._fold(error.stats)
            if isinstance(error, TransportFaultError) and not self._config.fallback_models:
                with self._fatal_lock:
                    if self._fatal_error is None:
                        self._fatal_error = error
                raise
            logger.debug("Child run at depth=%d failed: %s", child_depth, error.message)
            return f"Error in recursive call: {error.message}"
        self._fold(result.stats)
        return result.answer

    def delegate_batch(self, requests: Sequence[Any]) -> list[str]:
        if isinstance(requests, (str, bytes)) or not isinstance(requests, Sequence):
            raise TypeError("recursive_llm_batched expects a list of (sub_query, sub_context) pairs.")
        normalized = [_normalize_request(request, index=index) for index, request in enumerate(requests)]
        if not normalized:
            return []
        workers = max(1, min(int(self._config.max_parallel_calls), len(normalized)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rlm-batch") as executor:
            futures = [executor.submit(self.delegate, sub_query, sub_context) for sub_query, sub_context in normalized]
            return [future.result() for future in futures]

    def _fold(self, child_stats: ExecutionStats) -> None:
        with self._stats_lock:
            self._stats.absorb(child_stats)
