# ABOUTME: Parses FINAL, FINAL_VAR, and FINAL_WITH_CONFIDENCE termination markers from model output.
# ABOUTME: Resolves variable references against snippet bindings and clamps confidence into [0, 1].

from __future__ import annotations

import ast
from dataclasses import dataclass
import json
import math
import re
from typing import Any, Mapping


_CONFIDENCE_PATTERN = re.compile(r"\bFINAL_WITH_CONFIDENCE\s*\(\s*(\{[\s\S]*?\})\s*\)")
_VAR_PATTERN = re.compile(r"\bFINAL_VAR\s*\(\s*([A-Za-z_][A-Za-z0-9_]*)\s*\)")

# (pattern, strip_whitespace); triple quotes before single quotes so the longer form wins.
_LITERAL_PATTERNS: tuple[tuple[re.Pattern[str], bool], ...] = (
    (re.compile(r'\bFINAL\s*\(\s*"""([\s\S]*?)"""\s*\)'), True),
    (re.compile(r"\bFINAL\s*\(\s*'''([\s\S]*?)'''\s*\)"), True),
    (re.compile(r"\bFINAL\s*\(\s*`([\s\S]*?)`\s*\)"), True),
    (re.compile(r'\bFINAL\s*\(\s*"([^"\\]*(?:\\.[^"\\]*)*)"\s*\)'), False),
    (re.compile(r"\bFINAL\s*\(\s*'([^'\\]*(?:\\.[^'\\]*)*)'\s*\)"), False),
    (re.compile(r"\bFINAL\s*\(\s*(-?\d+(?:\.\d+)?|-?\.\d+)\s*\)"), False),
)

_ANY_MARKER_PATTERN = re.compile(r"\b(?:FINAL|FINAL_VAR|FINAL_WITH_CONFIDENCE)\s*\(")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "'": "'", "\\": "\\"}
_ESCAPE_PATTERN = re.compile(r"\\(.)", re.DOTALL)

_SCRAPE_ANSWER = re.compile(r"""["']?answer["']?\s*:\s*["'`]([^"'`]+)["'`]""")
_SCRAPE_CONFIDENCE = re.compile(r"""["']?confidence["']?\s*:\s*(-?[\d.]+)""")
_SCRAPE_REASONING = re.compile(r"""["']?reasoning["']?\s*:\s*["'`]([^"'`]+)["'`]""")


@dataclass(frozen=True)
class FinalAnswer:
    answer: str
    confidence: float | None = None
    reasoning: str | None = None
    marker: str = "FINAL"


def unescape_literal(text: str) -> str:
    return _ESCAPE_PATTERN.sub(lambda match: _ESCAPES.get(match.group(1), match.group(0)), text)


def has_marker(response: str) -> bool:
    return bool(_ANY_MARKER_PATTERN.search(str(response or "")))


def has_var_marker(response: str) -> bool:
    return bool(_VAR_PATTERN.search(str(response or "")))


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_object_literal(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        try:
            parsed = ast.literal_eval(raw)
        except (ValueError, SyntaxError, MemoryError, RecursionError):
            return None
    return parsed if isinstance(parsed, dict) else None


def _scrape_fields(raw: str) -> FinalAnswer | None:
    answer_match = _SCRAPE_ANSWER.search(raw)
    confidence_match = _SCRAPE_CONFIDENCE.search(raw)
    if answer_match is None or confidence_match is None:
        return None
    try:
        confidence = float(confidence_match.group(1))
    except ValueError:
        return None
    if math.isnan(confidence):
        return None
    reasoning_match = _SCRAPE_REASONING.search(raw)
    return FinalAnswer(
        answer=answer_match.group(1),
        confidence=clamp_confidence(confidence),
        reasoning=reasoning_match.group(1) if reasoning_match else None,
        marker="FINAL_WITH_CONFIDENCE",
    )


def extract_final_with_confidence(response: str) -> FinalAnswer | None:
    match = _CONFIDENCE_PATTERN.search(str(response or ""))
    if match is None:
        return None
    raw = match.group(1)
    parsed = _parse_object_literal(raw)
    if parsed is not None:
        answer = parsed.get("answer")
        confidence = parsed.get("confidence")
        if isinstance(answer, str) and _is_number(confidence) and not math.isnan(float(confidence)):
            reasoning = parsed.get("reasoning")
            return FinalAnswer(
                answer=answer,
                confidence=clamp_confidence(confidence),
                reasoning=reasoning if isinstance(reasoning, str) else None,
                marker="FINAL_WITH_CONFIDENCE",
            )
    return _scrape_fields(raw)


def extract_final(response: str) -> str | None:
    text = str(response or "")
    for pattern, strip_whitespace in _LITERAL_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        body = match.group(1)
        if strip_whitespace:
            body = body.strip()
        return unescape_literal(body)
    return None


def serialize_binding(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def extract_final_var(response: str, bindings: Mapping[str, Any]) -> str | None:
    match = _VAR_PATTERN.search(str(response or ""))
    if match is None:
        return None
    name = match.group(1)
    if name not in bindings:
        return None
    return serialize_binding(bindings[name])


def parse_final(response: str, bindings: Mapping[str, Any] | None = None) -> FinalAnswer | None:
    """Return the terminal answer carried by ``response``, if any.

    Checked in order: FINAL_WITH_CONFIDENCE, FINAL, FINAL_VAR. An unresolved
    FINAL_VAR is not terminal; the caller keeps iterating.
    """
    if not has_marker(response):
        return None
    with_confidence = extract_final_with_confidence(response)
    if with_confidence is not None:
        return with_confidence
    literal = extract_final(response)
    if literal is not None:
        return FinalAnswer(answer=literal, marker="FINAL")
    resolved = extract_final_var(response, bindings or {})
    if resolved is not None:
        return FinalAnswer(answer=resolved, marker="FINAL_VAR")
    return None
