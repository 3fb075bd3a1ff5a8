# ABOUTME: Validates cost estimation and the shared spend counter behind run budgets.
# ABOUTME: Ensures child charges propagate to ancestors, ceilings are pre-flight, and the warning fires once.

from __future__ import annotations

import threading

import pytest

from recursive_lm.runtime.budget_pool import BudgetPool, estimate_cost
from recursive_lm.runtime.errors import BudgetExceededError


def test_estimate_cost_uses_per_million_rates() -> None:
    assert estimate_cost(model="gpt-4o", input_tokens=1_000_000, output_tokens=100_000) == pytest.approx(3.5)


def test_estimate_cost_defaults_unknown_models() -> None:
    assert estimate_cost(model="house-model", input_tokens=1000, output_tokens=1000) == pytest.approx(0.0125)


def test_estimate_cost_honors_pricing_overrides() -> None:
    pricing = {"house-model": {"input": 1.0, "output": 1.0}}

    assert estimate_cost(model="house-model", input_tokens=500_000, output_tokens=500_000, pricing=pricing) == pytest.approx(1.0)


def test_pool_without_ceiling_never_blocks() -> None:
    pool = BudgetPool()
    pool.charge(model="gpt-4o", input_tokens=10_000_000, output_tokens=0)

    pool.ensure_available()
    assert pool.remaining() is None
    assert pool.spawn_child().ceiling is None


def test_pool_blocks_only_after_spend_reaches_ceiling() -> None:
    pool = BudgetPool(ceiling=0.01)
    pool.ensure_available()

    charge = pool.charge(model="gpt-4o", input_tokens=10_000, output_tokens=0)

    assert charge.cost == pytest.approx(0.025)
    with pytest.raises(BudgetExceededError) as exc_info:
        pool.ensure_available()
    assert exc_info.value.ceiling == pytest.approx(0.01)
    assert exc_info.value.spent == pytest.approx(0.025)


def test_warning_fires_once_at_eighty_percent() -> None:
    pool = BudgetPool(ceiling=1.0)

    first = pool.charge(model="m", input_tokens=0, output_tokens=70_000)
    second = pool.charge(model="m", input_tokens=0, output_tokens=20_000)
    third = pool.charge(model="m", input_tokens=0, output_tokens=1_000)

    assert (first.crossed_warning, second.crossed_warning, third.crossed_warning) == (False, True, False)
    assert pool.claim_warning() is False


def test_claim_warning_reports_spend_pushed_over_by_children() -> None:
    parent = BudgetPool(ceiling=1.0)
    child = parent.spawn_child()

    child.charge(model="m", input_tokens=0, output_tokens=90_000)

    assert parent.claim_warning() is True
    assert parent.claim_warning() is False


def test_child_ceiling_is_parent_remaining_and_spend_propagates() -> None:
    parent = BudgetPool(ceiling=1.0)
    parent.charge(model="m", input_tokens=0, output_tokens=40_000)

    child = parent.spawn_child()
    child.charge(model="m", input_tokens=0, output_tokens=10_000)

    assert child.ceiling == pytest.approx(0.6)
    assert child.spent == pytest.approx(0.1)
    assert parent.spent == pytest.approx(0.5)


def test_child_is_blocked_when_an_ancestor_is_exhausted() -> None:
    root = BudgetPool(ceiling=0.5)
    child = root.spawn_child()
    sibling = root.spawn_child()

    sibling.charge(model="m", input_tokens=0, output_tokens=60_000)

    with pytest.raises(BudgetExceededError):
        child.ensure_available()


def test_concurrent_children_do_not_lose_spend() -> None:
    root = BudgetPool(ceiling=1000.0)
    children = [root.spawn_child() for _ in range(8)]

    def _charge(pool: BudgetPool) -> None:
        for _ in range(250):
            pool.charge(model="m", input_tokens=0, output_tokens=100)

    threads = [threading.Thread(target=_charge, args=(child,)) for child in children]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert root.spent == pytest.approx(8 * 250 * 0.001)


def test_negative_ceiling_is_rejected() -> None:
    with pytest.raises(ValueError):
        BudgetPool(ceiling=-1.0)
