# ABOUTME: Validates snippet extraction from model responses.
# ABOUTME: Covers fenced blocks, marker stripping, and the looks-like-code fallback heuristic.

from __future__ import annotations

from recursive_lm.runtime.snippets import extract_snippet, looks_like_code, strip_markers


def test_extract_snippet_prefers_first_non_empty_fenced_block() -> None:
    response = (
        "Let me look.\n```python\n```\n"
        "```python\nprint(context[:100])\n```\n"
        "```\nprint('second')\n```"
    )

    assert extract_snippet(response) == "print(context[:100])"


def test_extract_snippet_accepts_untagged_fence() -> None:
    assert extract_snippet("```\ntotal = len(context)\nprint(total)\n```") == "total = len(context)\nprint(total)"


def test_extract_snippet_falls_back_to_code_like_text_without_markers() -> None:
    response = 'total = len(context)\nprint(total)\nFINAL_VAR(total)'

    assert extract_snippet(response) == "total = len(context)\nprint(total)"


def test_extract_snippet_rejects_plain_prose() -> None:
    assert extract_snippet("I think the document is about gardening") is None


def test_strip_markers_removes_every_marker_form() -> None:
    text = 'x = 1\nFINAL("done")\nFINAL_WITH_CONFIDENCE({"answer": "a", "confidence": 1})\nFINAL_VAR(x)'

    assert strip_markers(text) == "x = 1"


def test_looks_like_code_needs_two_indicators() -> None:
    assert looks_like_code("result = items[0]")
    assert not looks_like_code("hello world")


def test_extract_snippet_drops_marker_lines_inside_fenced_block() -> None:
    response = "```python\nanswer = context.upper()\nFINAL_VAR(answer)\n```"

    assert extract_snippet(response) == "answer = context.upper()"


def test_extract_snippet_keeps_marker_text_used_as_a_value() -> None:
    response = "```python\nprint('FINAL_VAR(answer)')\n```"

    assert extract_snippet(response) == "print('FINAL_VAR(answer)')"


def test_marker_only_fenced_block_is_not_a_snippet() -> None:
    assert extract_snippet("```python\nFINAL_VAR(answer)\n```") is None
