# ABOUTME: Defines the chat-completion model client interface used by completion runs.
# ABOUTME: Provides an OpenAI Responses API implementation that reports token usage per call.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from recursive_lm.runtime.contracts import Message
from recursive_lm.runtime.errors import TransportFaultError


DEFAULT_OPENAI_REQUEST_TIMEOUT_SEC = 120.0


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ModelCompletion:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0


class ModelClient(Protocol):
    def complete(
        self,
        messages: Sequence[Message],
        *,
        model: str,
        temperature: float | None,
        timeout_sec: float | None,
    ) -> ModelCompletion:
        raise NotImplementedError


class OpenAIModelClient:
    model_provider = "openai"

    def __init__(
        self,
        *,
        openai_client: Any | None = None,
        request_timeout_sec: float | None = DEFAULT_OPENAI_REQUEST_TIMEOUT_SEC,
    ) -> None:
        if openai_client is None:
            from openai import OpenAI

            self._openai_client = OpenAI()
        else:
            self._openai_client = openai_client
        self._request_timeout_sec = request_timeout_sec

    @staticmethod
    def _supports_temperature(model_name: str) -> bool:
        normalized = str(model_name or "").strip().lower()
        if normalized.startswith(("gpt-5", "o1", "o3", "o4")):
            return False
        return True

    @staticmethod
    def _extract_response_text(response: Any) -> str:
        raw_text = str(getattr(response, "output_text", "") or "").strip()
        if raw_text:
            return raw_text
        output_items = getattr(response, "output", None)
        if not isinstance(output_items, list):
            return ""
        collected: list[str] = []
        for item in output_items:
            content = getattr(item, "content", None)
            if content is None and isinstance(item, dict):
                content = item.get("content")
            if not isinstance(content, list):
                continue
            for block in content:
                block_text = getattr(block, "text", None)
                if block_text is None and isinstance(block, dict):
                    block_text = block.get("text")
                if isinstance(block_text, str) and block_text.strip():
                    collected.append(block_text.strip())
        return "\n".join(collected).strip()

    def complete(
        self,
        messages: Sequence[Message],
        *,
        model: str,
        temperature: float | None,
        timeout_sec: float | None,
    ) -> ModelCompletion:
        instructions = "\n\n".join(item.content for item in messages if item.role == "system")
        conversation = [item.to_dict() for item in messages if item.role != "system"]
        kwargs: dict[str, Any] = {"model": model, "input": conversation}
        if instructions:
            kwargs["instructions"] = instructions
        if temperature is not None and self._supports_temperature(model):
            kwargs["temperature"] = temperature
        effective_timeout = timeout_sec if timeout_sec is not None else self._request_timeout_sec
        if effective_timeout is not None:
            kwargs["timeout"] = float(effective_timeout)
        try:
            response = self._openai_client.responses.create(**kwargs)
        except Exception as exc:  # noqa: BLE001
            raise TransportFaultError(
                f"OpenAI request failed for model {model}: {type(exc).__name__}: {exc}",
                model=model,
            ) from exc
        text = self._extract_response_text(response)
        if not text:
            raise TransportFaultError(
                f"OpenAI response for model {model} did not include text output.",
                model=model,
            )
        usage = getattr(response, "usage", None)
        return ModelCompletion(
            content=text,
            input_tokens=_safe_int(getattr(usage, "input_tokens", 0), default=0),
            output_tokens=_safe_int(getattr(usage, "output_tokens", 0), default=0),
        )
