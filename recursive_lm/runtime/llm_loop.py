# ABOUTME: Dispatches one model completion with deterministic fallback across a configured model chain.
# ABOUTME: Maps exhausted chains to transport faults and reports every attempted dispatch for accounting.

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Sequence

from recursive_lm.runtime.contracts import Message
from recursive_lm.runtime.errors import TransportFaultError
from recursive_lm.runtime.llm_client import ModelClient, ModelCompletion


logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    completion: ModelCompletion
    model: str
    attempted_models: list[str] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempted_models)


def dispatch_with_fallback(
    *,
    client: ModelClient,
    messages: Sequence[Message],
    model: str,
    fallback_models: Sequence[str] = (),
    temperature: float | None,
    timeout_sec: float | None,
) -> DispatchResult:
    chain = [model] + [item for item in fallback_models if item and item != model]
    attempted: list[str] = []
    last_error: Exception | None = None

    for candidate in chain:
        attempted.append(candidate)
        try:
            completion = client.complete(
                messages,
                model=candidate,
                temperature=temperature,
                timeout_sec=timeout_sec,
            )
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if candidate != chain[-1]:
                logger.warning("model %s failed (%s); falling back", candidate, exc)
            continue
        if not isinstance(completion, ModelCompletion):
            last_error = TransportFaultError(
                f"Model client returned unsupported payload type {type(completion).__name__}.",
                model=candidate,
            )
            continue
        return DispatchResult(completion=completion, model=candidate, attempted_models=attempted)

    details = f"{type(last_error).__name__}: {last_error}" if last_error is not None else "unknown failure"
    error = TransportFaultError(
        f"Model dispatch failed after {len(attempted)} attempt(s) ({', '.join(attempted)}): {details}",
        model=model,
        attempted_models=attempted,
    )
    raise error from last_error
