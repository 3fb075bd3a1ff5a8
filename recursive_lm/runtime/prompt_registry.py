# ABOUTME: Loads immutable prompt templates for completion runs and renders them with run parameters.
# ABOUTME: Computes deterministic template hashes so recorded runs can name the prompt they used.

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import hashlib
from pathlib import Path
from string import Template


PROMPTS_ROOT = Path(__file__).resolve().parents[1] / "prompts"


SYSTEM_PROMPT_ID = "completion_system_v1"

_PROMPT_PATHS = {
    "completion_system_v1": "runtime/completion_system_v1.md",
    "completion_user_v1": "runtime/completion_user_v1.md",
    "completion_error_v1": "runtime/completion_error_v1.md",
    "completion_no_snippet_v1": "runtime/completion_no_snippet_v1.md",
}


@dataclass(frozen=True)
class PromptDefinition:
    prompt_id: str
    prompt_path: str
    prompt_text: str
    prompt_template_hash: str

    def render(self, **values: object) -> str:
        return Template(self.prompt_text).substitute({key: str(value) for key, value in values.items()}).strip()


def _prompt_hash(prompt_text: str) -> str:
    return f"sha256:{hashlib.sha256(prompt_text.encode('utf-8')).hexdigest()}"


def list_prompt_ids() -> list[str]:
    return sorted(_PROMPT_PATHS.keys())


@lru_cache(maxsize=None)
def get_prompt_definition(prompt_id: str) -> PromptDefinition:
    if prompt_id not in _PROMPT_PATHS:
        raise KeyError(f"Unknown prompt_id: {prompt_id}")
    prompt_file = PROMPTS_ROOT / _PROMPT_PATHS[prompt_id]
    prompt_text = prompt_file.read_text(encoding="utf-8")
    return PromptDefinition(
        prompt_id=prompt_id,
        prompt_path=str(prompt_file),
        prompt_text=prompt_text,
        prompt_template_hash=_prompt_hash(prompt_text),
    )


def get_prompt_definition_by_hash(prompt_template_hash: str) -> PromptDefinition:
    for prompt_id in list_prompt_ids():
        prompt = get_prompt_definition(prompt_id)
        if prompt.prompt_template_hash == prompt_template_hash:
            return prompt
    raise KeyError(f"Unknown prompt_template_hash: {prompt_template_hash}")


def format_context_size(size: int) -> str:
    if size >= 1_000_000:
        return f"{size / 1_000_000:.2f}M characters (~{round(size / 4000)}k tokens)"
    if size >= 1_000:
        return f"{size / 1_000:.1f}K characters (~{round(size / 4)} tokens)"
    return f"{size} characters"


def render_system_prompt(*, context_size: int, depth: int, max_depth: int) -> str:
    return get_prompt_definition(SYSTEM_PROMPT_ID).render(
        context_info=format_context_size(int(context_size)),
        depth=depth,
        max_depth=max_depth,
    )


def system_prompt_hash() -> str:
    return get_prompt_definition(SYSTEM_PROMPT_ID).prompt_template_hash


def render_user_prompt(query: str) -> str:
    return get_prompt_definition("completion_user_v1").render(query=query)


def render_error_feedback(error: str) -> str:
    return get_prompt_definition("completion_error_v1").render(error=error)


def render_no_snippet_feedback() -> str:
    return get_prompt_definition("completion_no_snippet_v1").render()
