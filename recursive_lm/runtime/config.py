# ABOUTME: Declares the validated run configuration shared by root and child completion runs.
# ABOUTME: Derives child configurations and loads settings from RLM_* environment variables.

from __future__ import annotations

from dataclasses import dataclass, field, replace
import os
from pathlib import Path
from typing import Any, Mapping

from dotenv import dotenv_values


DEFAULT_MAX_DEPTH = 5
DEFAULT_MAX_ITERATIONS = 30
DEFAULT_MAX_OUTPUT_CHARS = 2000
DEFAULT_TIMEOUT_SEC = 60.0
DEFAULT_MAX_PARALLEL_CALLS = 4


def _require_positive_int(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be a positive integer.")
    if value <= 0:
        raise ValueError(f"{field_name} must be a positive integer.")
    return value


def _require_positive_float(value: Any, *, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number > 0.")
    if float(value) <= 0.0:
        raise ValueError(f"{field_name} must be a number > 0.")
    return float(value)


@dataclass
class RLMConfig:
    model: str
    recursive_model: str | None = None
    max_depth: int = DEFAULT_MAX_DEPTH
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS
    temperature: float = 0.0
    cost_budget: float | None = None
    timeout_sec: float = DEFAULT_TIMEOUT_SEC
    fallback_models: tuple[str, ...] = ()
    snippet_timeout_sec: float | None = None
    max_parallel_calls: int = DEFAULT_MAX_PARALLEL_CALLS
    model_pricing: dict[str, dict[str, float]] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.model, str) or not self.model.strip():
            raise ValueError("model must be a non-empty string.")
        if self.recursive_model is not None and not str(self.recursive_model).strip():
            raise ValueError("recursive_model must be a non-empty string when provided.")
        _require_positive_int(self.max_depth, field_name="max_depth")
        _require_positive_int(self.max_iterations, field_name="max_iterations")
        _require_positive_int(self.max_output_chars, field_name="max_output_chars")
        _require_positive_int(self.max_parallel_calls, field_name="max_parallel_calls")
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise ValueError("temperature must be a number between 0 and 2.")
        if not 0.0 <= float(self.temperature) <= 2.0:
            raise ValueError("temperature must be a number between 0 and 2.")
        if self.cost_budget is not None:
            _require_positive_float(self.cost_budget, field_name="cost_budget")
        _require_positive_float(self.timeout_sec, field_name="timeout_sec")
        if self.snippet_timeout_sec is not None:
            _require_positive_float(self.snippet_timeout_sec, field_name="snippet_timeout_sec")
        self.fallback_models = tuple(str(item) for item in self.fallback_models if str(item).strip())

    @property
    def resolved_recursive_model(self) -> str:
        return self.recursive_model or self.model

    @property
    def resolved_snippet_timeout_sec(self) -> float:
        if self.snippet_timeout_sec is not None:
            return float(self.snippet_timeout_sec)
        return float(self.timeout_sec)

    def model_for_depth(self, depth: int) -> str:
        return self.model if depth == 0 else self.resolved_recursive_model

    def child_config(self, *, cost_budget: float | None) -> RLMConfig:
        # A non-positive ceiling would fail validation; the gate never delegates with one.
        return replace(
            self,
            model=self.resolved_recursive_model,
            recursive_model=self.resolved_recursive_model,
            cost_budget=cost_budget if cost_budget is None or cost_budget > 0 else None,
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        dotenv_path: str | Path | None = None,
        **overrides: Any,
    ) -> RLMConfig:
        env: dict[str, Any] = {}
        # Process environment wins over the .env file, as with load_dotenv(override=False).
        if dotenv_path is not None and Path(dotenv_path).is_file():
            env.update({key: value for key, value in dotenv_values(dotenv_path).items() if value is not None})
        env.update(os.environ if environ is None else environ)

        def _get(name: str) -> str | None:
            raw = env.get(name)
            if raw is None or not str(raw).strip():
                return None
            return str(raw).strip()

        values: dict[str, Any] = {}
        model = _get("RLM_MODEL")
        if model is not None:
            values["model"] = model
        recursive_model = _get("RLM_RECURSIVE_MODEL")
        if recursive_model is not None:
            values["recursive_model"] = recursive_model
        for env_name, field_name in (
            ("RLM_MAX_DEPTH", "max_depth"),
            ("RLM_MAX_ITERATIONS", "max_iterations"),
            ("RLM_MAX_OUTPUT_CHARS", "max_output_chars"),
            ("RLM_MAX_PARALLEL_CALLS", "max_parallel_calls"),
        ):
            raw = _get(env_name)
            if raw is not None:
                try:
                    values[field_name] = int(raw)
                except ValueError as exc:
                    raise ValueError(f"{env_name} must be an integer, got {raw!r}.") from exc
        for env_name, field_name in (
            ("RLM_TEMPERATURE", "temperature"),
            ("RLM_COST_BUDGET", "cost_budget"),
            ("RLM_TIMEOUT_SEC", "timeout_sec"),
        ):
            raw = _get(env_name)
            if raw is not None:
                try:
                    values[field_name] = float(raw)
                except ValueError as exc:
                    raise ValueError(f"{env_name} must be a number, got {raw!r}.") from exc
        fallback = _get("RLM_FALLBACK_MODELS")
        if fallback is not None:
            values["fallback_models"] = tuple(
                item.strip() for item in fallback.split(",") if item.strip()
            )
        values.update(overrides)
        if "model" not in values:
            raise ValueError("RLM_MODEL is not set and no model override was provided.")
        return cls(**values)
