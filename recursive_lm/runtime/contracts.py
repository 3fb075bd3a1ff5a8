# ABOUTME: Defines the message, statistics, and terminal-result dataclasses shared by completion runs.
# ABOUTME: Provides the additive stats fold used when child runs report back to their parent.

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal


Role = Literal["system", "user", "assistant"]
_ROLES = {"system", "user", "assistant"}


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unsupported message role: {self.role}.")

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ExecutionStats:
    llm_calls: int = 0
    iterations: int = 0
    max_depth_reached: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    repl_errors: int = 0
    wall_clock_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return int(self.input_tokens) + int(self.output_tokens)

    def absorb(self, child: ExecutionStats) -> None:
        """Fold a finished (or failed) child run into this run's counters.

        Calls, tokens, cost and errors add up; depth takes the max. Iterations
        and wall clock stay per-run.
        """
        self.llm_calls += int(child.llm_calls)
        self.input_tokens += int(child.input_tokens)
        self.output_tokens += int(child.output_tokens)
        self.estimated_cost += max(0.0, float(child.estimated_cost))
        self.repl_errors += int(child.repl_errors)
        self.max_depth_reached = max(int(self.max_depth_reached), int(child.max_depth_reached))

    def snapshot(self) -> ExecutionStats:
        return ExecutionStats(
            llm_calls=int(self.llm_calls),
            iterations=int(self.iterations),
            max_depth_reached=int(self.max_depth_reached),
            input_tokens=int(self.input_tokens),
            output_tokens=int(self.output_tokens),
            estimated_cost=float(self.estimated_cost),
            repl_errors=int(self.repl_errors),
            wall_clock_ms=int(self.wall_clock_ms),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["total_tokens"] = self.total_tokens
        return payload


@dataclass
class TerminalResult:
    answer: str
    confidence: float | None = None
    reasoning: str | None = None
    stats: ExecutionStats = field(default_factory=ExecutionStats)
    state_trajectory: list[str] = field(default_factory=list)
    prompt_template_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "stats": self.stats.to_dict(),
            "state_trajectory": list(self.state_trajectory),
            "prompt_template_hash": self.prompt_template_hash,
        }
