# ABOUTME: Defines the typed failure taxonomy raised by completion runs and snippet execution.
# ABOUTME: Separates run-fatal errors from recoverable snippet faults that are folded back into history.

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from recursive_lm.runtime.contracts import ExecutionStats


class RLMError(RuntimeError):
    code = "RLM_ERROR"
    recoverable = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})
        self.stats: ExecutionStats | None = None


class DepthExceededError(RLMError):
    code = "MAX_DEPTH_EXCEEDED"

    def __init__(self, *, depth: int, max_depth: int) -> None:
        super().__init__(
            f"Max recursion depth ({max_depth}) exceeded: run requested at depth={depth}.",
            details={"depth": depth, "max_depth": max_depth},
        )
        self.depth = depth
        self.max_depth = max_depth


class IterationsExhaustedError(RLMError):
    code = "MAX_ITERATIONS_EXCEEDED"

    def __init__(self, *, max_iterations: int, last_message: str | None) -> None:
        super().__init__(
            f"Max iterations ({max_iterations}) exceeded without FINAL() marker.",
            details={"max_iterations": max_iterations, "last_message": last_message},
        )
        self.max_iterations = max_iterations
        self.last_message = last_message


class BudgetExceededError(RLMError):
    code = "COST_BUDGET_EXCEEDED"

    def __init__(self, *, spent: float, ceiling: float) -> None:
        super().__init__(
            f"Cost budget exceeded: ${spent:.4f} spent of ${ceiling:.4f} budget.",
            details={"spent": spent, "ceiling": ceiling},
        )
        self.spent = spent
        self.ceiling = ceiling


class TransportFaultError(RLMError):
    code = "TRANSPORT_FAULT"

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        attempted_models: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"model": model, "attempted_models": list(attempted_models or [])},
        )
        self.model = model
        self.attempted_models = list(attempted_models or [])


class SnippetExecutionError(RLMError):
    code = "SNIPPET_EXECUTION_FAULT"
    recoverable = True

    def __init__(self, message: str, *, partial_output: str = "") -> None:
        super().__init__(message, details={"partial_output": partial_output})
        self.partial_output = partial_output


class SnippetTimeoutError(SnippetExecutionError):
    code = "SNIPPET_TIMEOUT"

    def __init__(self, *, timeout_sec: float, partial_output: str = "") -> None:
        super().__init__(
            f"Execution timeout: snippet exceeded {timeout_sec:g}s.",
            partial_output=partial_output,
        )
        self.timeout_sec = timeout_sec


class SnippetRejectedError(RLMError):
    code = "SNIPPET_REJECTED"
    recoverable = True

    def __init__(self, *, token: str, category: str) -> None:
        super().__init__(
            f'Forbidden pattern detected: "{token}" ({category}). '
            "File system, network, process and import access are not allowed.",
            details={"token": token, "category": category},
        )
        self.token = token
        self.category = category
