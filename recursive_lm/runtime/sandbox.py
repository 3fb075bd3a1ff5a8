# ABOUTME: Enforces the static snippet policy before any model-generated code runs.
# ABOUTME: Rejects denylisted tokens textually, then imports, dunder access, and frame introspection on the parsed tree.

from __future__ import annotations

import ast
import re

from recursive_lm.runtime.errors import SnippetRejectedError


FORBIDDEN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bos\b"), "process access"),
    (re.compile(r"\bsys\b"), "process access"),
    (re.compile(r"\bsubprocess\b"), "process access"),
    (re.compile(r"\benviron\b"), "process access"),
    (re.compile(r"\b(?:exit|quit)\s*\("), "process access"),
    (re.compile(r"\bimport\b"), "module loading"),
    (re.compile(r"\bimportlib\b"), "module loading"),
    (re.compile(r"\b(?:eval|exec|compile)\s*\("), "arbitrary evaluation"),
    (re.compile(r"\b(?:globals|locals|vars|breakpoint)\s*\("), "arbitrary evaluation"),
    (re.compile(r"\b(?:getattr|setattr|delattr)\b"), "object-model tampering"),
    (re.compile(r"__\w+__"), "object-model tampering"),
    (re.compile(r"\bopen\s*\("), "filesystem access"),
    (re.compile(r"\b(?:pathlib|shutil|tempfile)\b"), "filesystem access"),
    (re.compile(r"\b(?:socket|urllib|requests|httpx)\b"), "network access"),
    (re.compile(r"\bhttp\.client\b"), "network access"),
    (re.compile(r"\b(?:threading|multiprocessing|asyncio|signal|sched)\b"), "timers and threads"),
    (re.compile(r"\btime\.sleep\b"), "timers and threads"),
    (re.compile(r"\bbuiltins\b"), "ambient globals"),
)

# Frame, code and traceback handles reach the host interpreter's globals.
INTROSPECTION_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "gi_frame",
        "gi_code",
        "cr_frame",
        "cr_code",
        "ag_frame",
        "ag_code",
        "f_back",
        "f_globals",
        "f_locals",
        "f_builtins",
        "f_code",
        "f_trace",
        "tb_frame",
        "tb_next",
    }
)


def find_forbidden_token(code: str) -> tuple[str, str] | None:
    for pattern, category in FORBIDDEN_PATTERNS:
        match = pattern.search(code)
        if match is not None:
            return match.group(0).strip(), category
    return None


class SnippetPolicy:
    """Fast rejection layer for snippets; not an isolation boundary."""

    def check(self, code: str) -> None:
        found = find_forbidden_token(code)
        if found is not None:
            token, category = found
            raise SnippetRejectedError(token=token, category=category)

    def check_tree(self, tree: ast.AST) -> None:
        for node in ast.walk(tree):
            if isinstance(node, (ast.Import, ast.ImportFrom)):
                raise SnippetRejectedError(token="import", category="module loading")
            if isinstance(node, ast.Name) and _is_dunder(node.id):
                raise SnippetRejectedError(token=node.id, category="object-model tampering")
            if isinstance(node, ast.Attribute) and _is_dunder(node.attr):
                raise SnippetRejectedError(token=node.attr, category="object-model tampering")
            if isinstance(node, ast.Attribute) and node.attr in INTROSPECTION_ATTRIBUTES:
                raise SnippetRejectedError(token=node.attr, category="frame introspection")


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__") and len(name) > 4
