# ABOUTME: Re-exports the completion engine, its contracts, and its collaborator protocols.
# ABOUTME: Keeps imports stable for callers that only need to configure and run completions.

from recursive_lm.runtime.budget_pool import BudgetPool, estimate_cost
from recursive_lm.runtime.config import RLMConfig
from recursive_lm.runtime.context_access import ContextProvider, ContextView, StringContextProvider
from recursive_lm.runtime.contracts import ExecutionStats, Message, TerminalResult
from recursive_lm.runtime.errors import (
    BudgetExceededError,
    DepthExceededError,
    IterationsExhaustedError,
    RLMError,
    SnippetExecutionError,
    SnippetRejectedError,
    SnippetTimeoutError,
    TransportFaultError,
)
from recursive_lm.runtime.events import (
    CollectingEventSink,
    EventSink,
    LoggingEventSink,
    NullEventSink,
    RunEvent,
)
from recursive_lm.runtime.llm_client import ModelClient, ModelCompletion, OpenAIModelClient
from recursive_lm.runtime.orchestrator import Orchestrator, run_completion

__all__ = [
    "BudgetExceededError",
    "BudgetPool",
    "CollectingEventSink",
    "ContextProvider",
    "ContextView",
    "DepthExceededError",
    "EventSink",
    "ExecutionStats",
    "IterationsExhaustedError",
    "LoggingEventSink",
    "Message",
    "ModelClient",
    "ModelCompletion",
    "NullEventSink",
    "OpenAIModelClient",
    "Orchestrator",
    "RLMConfig",
    "RLMError",
    "RunEvent",
    "SnippetExecutionError",
    "SnippetRejectedError",
    "SnippetTimeoutError",
    "StringContextProvider",
    "TerminalResult",
    "TransportFaultError",
    "estimate_cost",
    "run_completion",
]
