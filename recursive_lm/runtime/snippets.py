# ABOUTME: Pulls the executable Python snippet out of a model response.
# ABOUTME: Prefers the first fenced block without its marker lines, else a looks-like-code heuristic on marker-stripped text.

from __future__ import annotations

import re


_FENCED_BLOCK = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?([\s\S]*?)```")
_MARKER_CALLS = (
    re.compile(r"\bFINAL_WITH_CONFIDENCE\s*\(\s*\{[\s\S]*?\}\s*\)"),
    re.compile(r"\bFINAL_VAR\s*\(\s*[A-Za-z_][A-Za-z0-9_]*\s*\)"),
    re.compile(r'\bFINAL\s*\(\s*"""[\s\S]*?"""\s*\)'),
    re.compile(r"\bFINAL\s*\(\s*'''[\s\S]*?'''\s*\)"),
    re.compile(r"\bFINAL\s*\(\s*`[\s\S]*?`\s*\)"),
    re.compile(r"\bFINAL\s*\([^)]*\)"),
)
# Marker calls written on their own line inside a code block; they are not Python.
_MARKER_LINES = tuple(
    re.compile(rf"^[ \t]*(?:{pattern.pattern})[ \t]*(?:\n|\Z)", re.MULTILINE) for pattern in _MARKER_CALLS
)

_CODE_INDICATORS = (
    re.compile(r"^\s*(?:def|class)\s+\w+|\blambda\b|\bfor\s+\w+(?:\s*,\s*\w+)*\s+in\b", re.MULTILINE),
    re.compile(r"\b\w+\s*\([^)]*\)"),
    re.compile(r"\b\w+\.\w+"),
    re.compile(r"^\s*\w+(?:\[[^\]]*\])?\s*[+\-*/]?=(?!=)", re.MULTILINE),
    re.compile(r"[\[{][^\]}]*[\]}]"),
    re.compile(r"==|!=|<=|>=|\s<\s|\s>\s"),
    re.compile(r"\w\s*[+\-*/%]\s*\w"),
    re.compile(r"(?:^|\s)#"),
)
MIN_CODE_INDICATORS = 2


def extract_fenced_block(response: str) -> str | None:
    for match in _FENCED_BLOCK.finditer(str(response or "")):
        body = _strip_marker_lines(match.group(1)).strip()
        if body:
            return body
    return None


def _strip_marker_lines(code: str) -> str:
    for pattern in _MARKER_LINES:
        code = pattern.sub("", code)
    return code


def strip_markers(response: str) -> str:
    text = str(response or "")
    for pattern in _MARKER_CALLS:
        text = pattern.sub("", text)
    return text.strip()


def looks_like_code(text: str) -> bool:
    hits = 0
    for indicator in _CODE_INDICATORS:
        if indicator.search(text):
            hits += 1
            if hits >= MIN_CODE_INDICATORS:
                return True
    return False


def extract_snippet(response: str) -> str | None:
    fenced = extract_fenced_block(response)
    if fenced is not None:
        return fenced
    remainder = strip_markers(response)
    if remainder and looks_like_code(remainder):
        return remainder
    return None
