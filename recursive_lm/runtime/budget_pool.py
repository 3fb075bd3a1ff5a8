# ABOUTME: Tracks estimated model spend for a run and every child run drawing from it.
# ABOUTME: Enforces pre-flight cost ceilings, prices tokens per model, and raises the 80% spend warning.

from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Mapping

from recursive_lm.runtime.errors import BudgetExceededError


MODEL_PRICING_USD_PER_MILLION: dict[str, dict[str, float]] = {
    "claude-opus-4": {"input": 15.0, "output": 75.0},
    "claude-sonnet-4": {"input": 3.0, "output": 15.0},
    "claude-haiku": {"input": 0.25, "output": 1.25},
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "gpt-4-turbo": {"input": 10.0, "output": 30.0},
    "gpt-5-mini": {"input": 0.25, "output": 2.0},
    "gpt-5.2": {"input": 2.0, "output": 8.0},
    "o1": {"input": 15.0, "output": 60.0},
    "o1-mini": {"input": 3.0, "output": 12.0},
    "gemini-2.0-flash": {"input": 0.1, "output": 0.4},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.0},
}
# Unknown models are priced at a moderate rate rather than for free.
DEFAULT_PRICING_USD_PER_MILLION = {"input": 2.5, "output": 10.0}
BUDGET_WARNING_RATIO = 0.8


def estimate_cost(
    *,
    model: str,
    input_tokens: int,
    output_tokens: int,
    pricing: Mapping[str, Mapping[str, float]] | None = None,
) -> float:
    table = MODEL_PRICING_USD_PER_MILLION if pricing is None else pricing
    rates = table.get(model)
    if rates is None and pricing is not None:
        rates = MODEL_PRICING_USD_PER_MILLION.get(model)
    if rates is None:
        rates = DEFAULT_PRICING_USD_PER_MILLION
    input_rate = float(rates.get("input", DEFAULT_PRICING_USD_PER_MILLION["input"]))
    output_rate = float(rates.get("output", DEFAULT_PRICING_USD_PER_MILLION["output"]))
    return (max(0, int(input_tokens)) * input_rate + max(0, int(output_tokens)) * output_rate) / 1_000_000.0


@dataclass
class ChargeResult:
    cost: float
    spent: float
    crossed_warning: bool


class BudgetPool:
    """Spend counter for one run.

    Child pools forward every charge to their ancestors under each pool's
    lock, so concurrent siblings always see the live total of the tree.
    """

    def __init__(
        self,
        *,
        ceiling: float | None = None,
        parent: BudgetPool | None = None,
        pricing: Mapping[str, Mapping[str, float]] | None = None,
    ) -> None:
        if ceiling is not None and float(ceiling) < 0.0:
            raise ValueError("ceiling must be >= 0 when provided.")
        self._ceiling = None if ceiling is None else float(ceiling)
        self._parent = parent
        self._pricing = pricing if pricing is not None else (parent._pricing if parent is not None else None)
        self._spent = 0.0
        self._warned = False
        self._lock = threading.Lock()

    @property
    def ceiling(self) -> float | None:
        return self._ceiling

    @property
    def parent(self) -> BudgetPool | None:
        return self._parent

    @property
    def spent(self) -> float:
        with self._lock:
            return self._spent

    def remaining(self) -> float | None:
        if self._ceiling is None:
            return None
        with self._lock:
            return max(0.0, self._ceiling - self._spent)

    def exceeded_reason(self) -> BudgetExceededError | None:
        pool: BudgetPool | None = self
        while pool is not None:
            if pool._ceiling is not None:
                spent = pool.spent
                if spent >= pool._ceiling:
                    return BudgetExceededError(spent=spent, ceiling=pool._ceiling)
            pool = pool._parent
        return None

    def ensure_available(self) -> None:
        error = self.exceeded_reason()
        if error is not None:
            raise error

    def charge(self, *, model: str, input_tokens: int, output_tokens: int) -> ChargeResult:
        cost = estimate_cost(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            pricing=self._pricing,
        )
        return self._add(cost, direct=True)

    def _add(self, cost: float, *, direct: bool) -> ChargeResult:
        crossed = False
        with self._lock:
            self._spent += max(0.0, float(cost))
            spent = self._spent
            if (
                direct
                and self._ceiling is not None
                and not self._warned
                and spent >= self._ceiling * BUDGET_WARNING_RATIO
            ):
                self._warned = True
                crossed = True
        if self._parent is not None:
            self._parent._add(cost, direct=False)
        return ChargeResult(cost=float(cost), spent=spent, crossed_warning=crossed)

    def claim_warning(self) -> bool:
        """Return True exactly once, the first time spend is seen at or past 80% of the ceiling."""
        with self._lock:
            if self._warned or self._ceiling is None:
                return False
            if self._spent < self._ceiling * BUDGET_WARNING_RATIO:
                return False
            self._warned = True
            return True

    def spawn_child(self) -> BudgetPool:
        return BudgetPool(ceiling=self.remaining(), parent=self, pricing=self._pricing)
