# ABOUTME: Wraps run contexts behind a read-only provider protocol and a snippet-facing view.
# ABOUTME: Supplies the bounded slice and search helpers that snippets use to navigate long context.

from __future__ import annotations

import re
from typing import Any, Protocol, runtime_checkable


DEFAULT_SEARCH_LIMIT = 20


@runtime_checkable
class ContextProvider(Protocol):
    @property
    def size(self) -> int: ...

    def slice(self, start: int, end: int) -> str: ...


class StringContextProvider:
    def __init__(self, text: str) -> None:
        if not isinstance(text, str):
            raise TypeError(f"context must be str, got {type(text).__name__}")
        self._text = text

    @property
    def size(self) -> int:
        return len(self._text)

    def slice(self, start: int, end: int) -> str:
        start, end = _clamp_range(start, end, self.size)
        return self._text[start:end]

    def search(self, pattern: str) -> list[str]:
        return [match.group(0) for match in re.finditer(pattern, self._text)]


def _clamp_range(start: int, end: int, size: int) -> tuple[int, int]:
    if isinstance(start, bool) or isinstance(end, bool) or not isinstance(start, int) or not isinstance(end, int):
        raise ValueError(
            f"start and end must be integers, got {type(start).__name__}, {type(end).__name__}"
        )
    start = max(0, start)
    end = min(size, end)
    if start > end:
        start, end = end, start
    return start, end


class ContextView:
    """Read-only, sequence-like handle over a provider for use inside snippets."""

    def __init__(self, provider: ContextProvider) -> None:
        self._provider = provider

    @property
    def size(self) -> int:
        return int(self._provider.size)

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, key: int | slice) -> str:
        if isinstance(key, slice):
            start, stop, step = key.indices(self.size)
            if step != 1:
                return self._provider.slice(0, self.size)[key]
            if stop <= start:
                return ""
            return self._provider.slice(start, stop)
        if isinstance(key, bool) or not isinstance(key, int):
            raise TypeError(f"context indices must be integers or slices, not {type(key).__name__}")
        index = key + self.size if key < 0 else key
        if not 0 <= index < self.size:
            raise IndexError("context index out of range")
        return self._provider.slice(index, index + 1)

    def slice(self, start: int, end: int) -> str:
        start, end = _clamp_range(start, end, self.size)
        return self._provider.slice(start, end)

    def search(self, pattern: str, max_results: int = DEFAULT_SEARCH_LIMIT) -> list[str]:
        searcher = getattr(self._provider, "search", None)
        if callable(searcher):
            matches = list(searcher(pattern))
        else:
            text = self._provider.slice(0, self.size)
            matches = [match.group(0) for match in re.finditer(pattern, text)]
        return matches[: max(0, int(max_results))]

    def __str__(self) -> str:
        return self._provider.slice(0, self.size)

    def __repr__(self) -> str:
        return f"ContextView(size={self.size})"


def resolve_context(context: Any) -> ContextProvider:
    if isinstance(context, str):
        return StringContextProvider(context)
    if isinstance(context, ContextView):
        return context._provider
    if isinstance(context, ContextProvider):
        return context
    raise TypeError(
        f"context must be str or provide size/slice(start, end), got {type(context).__name__}"
    )


def snippet_context(context: Any) -> str | ContextView:
    """Value bound to ``context`` inside a snippet: the string itself, or a view."""
    if isinstance(context, str):
        return context
    return ContextView(resolve_context(context))


def context_size(context: Any) -> int:
    if isinstance(context, str):
        return len(context)
    return int(resolve_context(context).size)
