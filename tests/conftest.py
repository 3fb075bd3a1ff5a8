# ABOUTME: Ensures local package imports resolve from the repository root during pytest runs.
# ABOUTME: Shares the scripted model client used by completion-run tests across unit and integration suites.

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Callable, Sequence

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from recursive_lm.runtime.contracts import Message  # noqa: E402
from recursive_lm.runtime.llm_client import ModelCompletion  # noqa: E402


class ScriptedModelClient:
    """Replays canned replies; ``route`` picks a script by the run's question."""

    def __init__(
        self,
        replies: Sequence[str | Exception] = (),
        *,
        route: Callable[[Sequence[Message]], str] | None = None,
        scripts: dict[str, Sequence[str | Exception]] | None = None,
        input_tokens: int = 100,
        output_tokens: int = 50,
    ) -> None:
        self._scripts: dict[str, list[str | Exception]] = {"default": list(replies)}
        for key, items in (scripts or {}).items():
            self._scripts[key] = list(items)
        self._route = route
        self._input_tokens = input_tokens
        self._output_tokens = output_tokens
        self._lock = threading.Lock()
        self.calls: list[dict[str, object]] = []

    @staticmethod
    def route_by_question(messages: Sequence[Message]) -> str:
        """Returns the question text of the run the messages belong to."""
        for message in messages:
            if message.role == "user" and message.content.startswith("Question: "):
                return message.content.split("\n", 1)[0][len("Question: "):].strip()
        return "default"

    def complete(
        self,
        messages: Sequence[Message],
        *,
        model: str,
        temperature: float | None,
        timeout_sec: float | None,
    ) -> ModelCompletion:
        key = self._route(messages) if self._route is not None else "default"
        with self._lock:
            self.calls.append({"model": model, "key": key, "messages": list(messages)})
            script = self._scripts.get(key, [])
            if not script:
                raise AssertionError(f"scripted client ran out of replies for {key!r}")
            reply = script.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ModelCompletion(
            content=reply,
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
        )


@pytest.fixture
def scripted_client() -> Callable[..., ScriptedModelClient]:
    return ScriptedModelClient
