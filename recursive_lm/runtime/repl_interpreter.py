# ABOUTME: Executes model-generated Python snippets over an explicitly whitelisted namespace.
# ABOUTME: Captures print output, enforces a per-snippet wall-clock deadline, and persists bindings between snippets.

from __future__ import annotations

import ast
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import io
import json
import logging
import math
import re
import sys
import threading
import time
from types import CodeType, FrameType, MappingProxyType
from typing import Any, Callable, Iterator, Mapping

from recursive_lm.runtime.errors import RLMError, SnippetExecutionError, SnippetTimeoutError
from recursive_lm.runtime.sandbox import SnippetPolicy


logger = logging.getLogger(__name__)

SNIPPET_FILENAME = "<snippet>"
_POLL_INTERVAL_SEC = 0.05
# How long a timed-out worker gets to unwind before it is abandoned.
_ABANDON_GRACE_SEC = 1.0


class _ReadOnlyFacade:
    __slots__ = ("_name", "_members")

    def __init__(self, name: str, members: Mapping[str, Any]) -> None:
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_members", MappingProxyType(dict(members)))

    def __getattr__(self, item: str) -> Any:
        try:
            return self._members[item]
        except KeyError:
            raise AttributeError(f"{self._name}.{item} is not available in snippets.") from None

    def __setattr__(self, key: str, value: Any) -> None:
        raise AttributeError(f"{self._name} is read-only in snippets.")

    def __delattr__(self, key: str) -> None:
        raise AttributeError(f"{self._name} is read-only in snippets.")

    def __dir__(self) -> list[str]:
        return sorted(self._members)

    def __repr__(self) -> str:
        return f"<module {self._name!r} (read-only)>"


_JSON_FACADE = _ReadOnlyFacade(
    "json",
    {"loads": json.loads, "dumps": json.dumps, "JSONDecodeError": json.JSONDecodeError},
)
_MATH_FACADE = _ReadOnlyFacade(
    "math",
    {name: getattr(math, name) for name in dir(math) if not name.startswith("_")},
)
_RE_FACADE = _ReadOnlyFacade(
    "re",
    {
        name: getattr(re, name)
        for name in (
            "compile", "search", "match", "fullmatch", "findall", "finditer", "sub", "subn",
            "split", "escape", "error", "IGNORECASE", "I", "MULTILINE", "M", "DOTALL", "S",
            "VERBOSE", "X", "ASCII", "A",
        )
    },
)

SAFE_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "ascii": ascii,
    "bin": bin,
    "bool": bool,
    "callable": callable,
    "chr": chr,
    "dict": dict,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "format": format,
    "frozenset": frozenset,
    "hasattr": hasattr,
    "hash": hash,
    "hex": hex,
    "int": int,
    "isinstance": isinstance,
    "issubclass": issubclass,
    "iter": iter,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "next": next,
    "oct": oct,
    "ord": ord,
    "pow": pow,
    "range": range,
    "repr": repr,
    "reversed": reversed,
    "round": round,
    "set": set,
    "slice": slice,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "ArithmeticError": ArithmeticError,
    "AssertionError": AssertionError,
    "AttributeError": AttributeError,
    "Exception": Exception,
    "IndexError": IndexError,
    "KeyError": KeyError,
    "LookupError": LookupError,
    "NameError": NameError,
    "RuntimeError": RuntimeError,
    "StopIteration": StopIteration,
    "TypeError": TypeError,
    "ValueError": ValueError,
    "ZeroDivisionError": ZeroDivisionError,
    "__build_class__": __build_class__,
}

_STANDARD_CAPABILITIES: dict[str, Any] = {
    "json": _JSON_FACADE,
    "math": _MATH_FACADE,
    "re": _RE_FACADE,
    "datetime": datetime,
    "date": date,
    "timedelta": timedelta,
}


class _DeadlineExceeded(BaseException):
    pass


class _Deadline:
    """Wall-clock budget for one snippet; time spent while paused is not charged."""

    def __init__(self, timeout_sec: float) -> None:
        self._timeout_sec = float(timeout_sec)
        self._charged = 0.0
        self._resumed_at: float | None = None
        self._paused = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            self._resumed_at = time.monotonic()

    def elapsed(self) -> float:
        with self._lock:
            if self._paused or self._resumed_at is None:
                return self._charged
            return self._charged + (time.monotonic() - self._resumed_at)

    def expired(self) -> bool:
        return self.elapsed() > self._timeout_sec

    @contextmanager
    def paused(self) -> Iterator[None]:
        with self._lock:
            if self._paused == 0 and self._resumed_at is not None:
                self._charged += time.monotonic() - self._resumed_at
            self._paused += 1
        try:
            yield
        finally:
            with self._lock:
                self._paused -= 1
                if self._paused == 0:
                    self._resumed_at = time.monotonic()


def _make_tracer(deadline: _Deadline) -> Callable[[FrameType, str, Any], Any]:
    def _local(frame: FrameType, event: str, arg: Any) -> Any:
        if event == "line" and deadline.expired():
            raise _DeadlineExceeded()
        return _local

    def _global(frame: FrameType, event: str, arg: Any) -> Any:
        if frame.f_code.co_filename != SNIPPET_FILENAME:
            return None
        if deadline.expired():
            raise _DeadlineExceeded()
        return _local

    return _global


@dataclass
class ReplExecutionResult:
    output: str
    success: bool = True
    truncated: bool = False
    bindings: dict[str, Any] = field(default_factory=dict)


def truncate_output(text: str, *, max_chars: int) -> tuple[str, bool]:
    if len(text) <= max_chars:
        return text, False
    return (
        f"{text[:max_chars]}\n\n[Output truncated: {len(text)} chars total, showing first {max_chars}]",
        True,
    )


def _display(value: Any) -> str:
    return value if isinstance(value, str) else repr(value)


def _compile_snippet(tree: ast.Module) -> tuple[CodeType, CodeType | None]:
    trailing: CodeType | None = None
    body = list(tree.body)
    if body and isinstance(body[-1], ast.Expr):
        expression = ast.Expression(body=body.pop().value)
        trailing = compile(expression, SNIPPET_FILENAME, "eval")
    module = ast.Module(body=body, type_ignores=[])
    return compile(module, SNIPPET_FILENAME, "exec"), trailing


class ReplInterpreter:
    def __init__(
        self,
        *,
        max_output_chars: int,
        timeout_sec: float,
        policy: SnippetPolicy | None = None,
    ) -> None:
        self._policy = policy or SnippetPolicy()
        self._max_output_chars = max(1, int(max_output_chars))
        self._timeout_sec = float(timeout_sec)
        self._namespace: dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS), "__name__": "__snippet__"}
        self._reserved: set[str] = {"__builtins__", "__name__", "print", *_STANDARD_CAPABILITIES}

    @property
    def bindings(self) -> dict[str, Any]:
        return {key: value for key, value in self._namespace.items() if key not in self._reserved}

    def execute(
        self,
        *,
        code: str,
        capabilities: Mapping[str, Any] | None = None,
        delegations: Mapping[str, Callable[..., Any]] | None = None,
    ) -> ReplExecutionResult:
        if not isinstance(code, str) or not code.strip():
            return ReplExecutionResult(output="", bindings=self.bindings)

        self._policy.check(code)
        try:
            tree = ast.parse(code, filename=SNIPPET_FILENAME, mode="exec")
        except SyntaxError as exc:
            raise SnippetExecutionError(
                f"Execution error: SyntaxError: {exc.msg} (line {exc.lineno})"
            ) from exc
        self._policy.check_tree(tree)
        body_code, trailing_code = _compile_snippet(tree)

        deadline = _Deadline(self._timeout_sec)
        buffer = io.StringIO()

        def _print(*args: Any, sep: str | None = " ", end: str | None = "\n", **kwargs: Any) -> None:
            del kwargs
            sep = " " if sep is None else str(sep)
            end = "\n" if end is None else str(end)
            buffer.write(sep.join(str(arg) for arg in args) + end)

        def _paused(fn: Callable[..., Any]) -> Callable[..., Any]:
            def _call(*args: Any, **kwargs: Any) -> Any:
                with deadline.paused():
                    return fn(*args, **kwargs)

            return _call

        injected: dict[str, Any] = dict(_STANDARD_CAPABILITIES)
        injected.update(capabilities or {})
        injected.update({name: _paused(fn) for name, fn in (delegations or {}).items()})
        injected["print"] = _print
        self._reserved.update(injected)
        self._namespace.update(injected)

        outcome: dict[str, Any] = {}
        namespace = self._namespace
        tracer = _make_tracer(deadline)

        def _run() -> None:
            sys.settrace(tracer)
            try:
                exec(body_code, namespace)
                if trailing_code is not None:
                    outcome["value"] = eval(trailing_code, namespace)
            except _DeadlineExceeded:
                outcome["timed_out"] = True
            except Exception as exc:  # noqa: BLE001
                outcome["error"] = exc
            finally:
                sys.settrace(None)

        worker = threading.Thread(target=_run, name="rlm-snippet", daemon=True)
        deadline.start()
        worker.start()
        while worker.is_alive():
            worker.join(_POLL_INTERVAL_SEC)
            if worker.is_alive() and deadline.expired():
                worker.join(_ABANDON_GRACE_SEC)
                if worker.is_alive():
                    logger.warning("Snippet worker ignored its deadline; abandoning thread.")
                    outcome["timed_out"] = True
                break

        captured = buffer.getvalue()
        if outcome.get("timed_out"):
            partial, _ = truncate_output(captured.rstrip("\n"), max_chars=self._max_output_chars)
            raise SnippetTimeoutError(timeout_sec=self._timeout_sec, partial_output=partial)

        error = outcome.get("error")
        if error is not None:
            partial, _ = truncate_output(captured.rstrip("\n"), max_chars=self._max_output_chars)
            if isinstance(error, RLMError) and not error.recoverable:
                raise error
            raise SnippetExecutionError(
                f"Execution error: {type(error).__name__}: {error}",
                partial_output=partial,
            ) from error

        if outcome.get("value") is not None:
            captured += _display(outcome["value"]) + "\n"
        output, truncated = truncate_output(captured.rstrip("\n"), max_chars=self._max_output_chars)
        return ReplExecutionResult(output=output, success=True, truncated=truncated, bindings=self.bindings)
