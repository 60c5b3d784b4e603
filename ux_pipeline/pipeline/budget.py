"""Per-model token budgets and the per-run tracker that enforces them."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from pydantic import BaseModel, PositiveInt, model_validator

_log = logging.getLogger(__name__)

# UX analysis request size (1500) plus the synthesis floor (3000).
MIN_VIABLE_PIPELINE_TOKENS = 4500


class BudgetGroup(str, Enum):
    """Which ceiling of a TokenBudget governs a stage."""

    stage1 = "stage1"  # vision metadata
    stage2 = "stage2"  # vision-informed UX analysis
    stage3 = "stage3"  # synthesis


class TokenBudget(BaseModel):
    """Token ceilings for one model identifier."""

    model_config = {"frozen": True}

    stage1_ceiling: PositiveInt
    stage2_ceiling: PositiveInt
    stage3_ceiling: PositiveInt
    buffer: PositiveInt

    @model_validator(mode="after")
    def covers_minimum_pipeline_cost(self) -> "TokenBudget":
        if self.total <= MIN_VIABLE_PIPELINE_TOKENS:
            raise ValueError(
                f"Token budget total {self.total} does not exceed the minimum viable "
                f"pipeline cost of {MIN_VIABLE_PIPELINE_TOKENS} tokens."
            )
        return self

    @property
    def total(self) -> int:
        return self.stage1_ceiling + self.stage2_ceiling + self.stage3_ceiling + self.buffer

    def ceiling(self, group: BudgetGroup) -> int:
        if group is BudgetGroup.stage1:
            return self.stage1_ceiling
        if group is BudgetGroup.stage2:
            return self.stage2_ceiling
        return self.stage3_ceiling


DEFAULT_TOKEN_BUDGETS: dict[str, TokenBudget] = {
    "claude-opus-4-20250514": TokenBudget(
        stage1_ceiling=2000, stage2_ceiling=8000, stage3_ceiling=15000, buffer=5000
    ),
    "gpt-4o": TokenBudget(
        stage1_ceiling=3000, stage2_ceiling=10000, stage3_ceiling=20000, buffer=7000
    ),
}


@dataclass(frozen=True)
class BudgetBreach:
    """First recorded charge that pushed the running total past its group ceiling."""

    stage_name: str
    model_id: str
    group: BudgetGroup
    used: int
    ceiling: int


class TokenBudgetTracker:
    """
    Running token total for exactly one pipeline run.

    Construct a fresh tracker per run; instances are never shared between runs.
    remaining(model_id, group) = budgets[model_id].ceiling(group) - used.
    """

    def __init__(self, budgets: Mapping[str, TokenBudget]) -> None:
        self._budgets = dict(budgets)
        self._used = 0
        self._charges: list[tuple[str, int]] = []
        self._breach: BudgetBreach | None = None

    @property
    def used(self) -> int:
        return self._used

    @property
    def charges(self) -> tuple[tuple[str, int], ...]:
        """(stage_name, tokens) per recorded charge, in order."""
        return tuple(self._charges)

    @property
    def breach(self) -> BudgetBreach | None:
        return self._breach

    def budget_for(self, model_id: str) -> TokenBudget:
        try:
            return self._budgets[model_id]
        except KeyError:
            raise KeyError(f"No token budget configured for model '{model_id}'") from None

    def remaining(self, model_id: str, group: BudgetGroup) -> int:
        return self.budget_for(model_id).ceiling(group) - self._used

    def total_remaining(self, model_id: str) -> int:
        return max(self.budget_for(model_id).total - self._used, 0)

    def record(self, stage_name: str, model_id: str, group: BudgetGroup, tokens: int) -> None:
        """Add tokens consumed by a stage. Negative counts are rejected."""
        if tokens < 0:
            raise ValueError(f"Token usage for stage '{stage_name}' cannot be negative: {tokens}")
        self._used += tokens
        self._charges.append((stage_name, tokens))
        ceiling = self.budget_for(model_id).ceiling(group)
        if self._used > ceiling and self._breach is None:
            self._breach = BudgetBreach(
                stage_name=stage_name,
                model_id=model_id,
                group=group,
                used=self._used,
                ceiling=ceiling,
            )
            _log.warning(
                "Stage %s pushed token usage to %s, over the %s ceiling of %s for %s",
                stage_name,
                self._used,
                group.value,
                ceiling,
                model_id,
            )
