"""In-process pipeline coordinator: plan → inventory → budget → shopping.

Stages run strictly one after another, each consuming the previous stage's
typed output. Every stage appends a line to ``steps``; degraded and fatal
outcomes also append to ``errors``. Once inventory has loaded, a failing
stage ends the run with the partial result instead of an exception.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path

import structlog

from grocery.activities.budget import run_budget_stage
from grocery.activities.inventory import run_inventory_check
from grocery.activities.plan import generate_meal_plan
from grocery.activities.shopping import describe_shopping_list
from grocery.config import settings
from grocery.errors import ReferenceDataMissing
from grocery.logging import request_context
from grocery.models.contracts import (
    BudgetResult,
    GroceryRequest,
    InventoryResult,
    PipelineResult,
    PlanMealsOutput,
    ShoppingResult,
)
from grocery.utils.llm import TextGenerator

log = structlog.get_logger("coordinator")


@dataclass(frozen=True)
class PipelineConfig:
    budget_ceiling: float
    default_price: float
    max_attempts: int
    data_dir: str | Path = ""
    prices_file: str = "prices.json"
    inventory_file: str = "inventory.json"

    @classmethod
    def from_settings(cls, **overrides: object) -> PipelineConfig:
        values: dict[str, object] = {
            "budget_ceiling": settings.budget_ceiling,
            "default_price": settings.default_item_price,
            "max_attempts": settings.llm_max_attempts,
            "data_dir": settings.data_dir,
            "prices_file": settings.prices_file,
            "inventory_file": settings.inventory_file,
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]


# === Step log lines (shared with the Temporal workflow) ===


def plan_step(output: PlanMealsOutput) -> str:
    plan = output.meal_plan
    line = f"plan: {len(plan.meals)} meal(s), {len(plan.distinct_ingredients())} ingredient(s)"
    return f"{line} (degraded)" if output.degraded else line


def inventory_step(result: InventoryResult) -> str:
    return f"inventory: {len(result.available)} available, {len(result.missing)} missing"


def budget_step(result: BudgetResult) -> str:
    return f"budget: {len(result.items)} item(s), total {result.total_cost:.2f} ({result.note})"


def shopping_step(result: ShoppingResult) -> str:
    return f"shopping: {len(result.categorized_items)} item(s) described"


class GroceryPipeline:
    """Runs one request at a time through the four stages.

    The generator is the only way out to the model; tests pass a fake.
    """

    def __init__(self, generate: TextGenerator, config: PipelineConfig | None = None) -> None:
        self._generate = generate
        self.config = config or PipelineConfig.from_settings()

    async def run(self, request: GroceryRequest, request_id: str | None = None) -> PipelineResult:
        with request_context(request_id or uuid.uuid4().hex):
            return await self._run(request)

    async def _run(self, request: GroceryRequest) -> PipelineResult:
        result = PipelineResult()
        ceiling = request.budget if request.budget is not None else self.config.budget_ceiling
        log.info("pipeline_started", meals=request.number_of_meals, ceiling=ceiling)

        # --- Plan ---
        planned = await generate_meal_plan(self._generate, request, self.config.max_attempts)
        result.meal_plan_response = planned.meal_plan
        result.steps.append(plan_step(planned))
        if planned.degraded:
            result.errors.append(f"plan: {planned.note}")

        # --- Inventory ---
        try:
            inventory = run_inventory_check(
                planned.meal_plan, self.config.data_dir, self.config.inventory_file
            )
        except ReferenceDataMissing as exc:
            log.error("pipeline_inventory_missing", error=str(exc))
            result.errors.append(f"inventory: {exc}")
            return result
        result.inventory_response = inventory
        result.steps.append(inventory_step(inventory))

        # --- Budget ---
        try:
            budget = await run_budget_stage(
                self._generate,
                inventory,
                budget_ceiling=ceiling,
                default_price=self.config.default_price,
                max_attempts=self.config.max_attempts,
                data_dir=self.config.data_dir,
                prices_file=self.config.prices_file,
            )
        except Exception as exc:
            log.exception("pipeline_budget_failed")
            result.errors.append(f"budget: {exc}")
            return result
        result.budget_response = budget
        result.steps.append(budget_step(budget))
        if budget.note.startswith("Failed to parse"):
            result.errors.append(f"budget: {budget.note}")

        # --- Shopping ---
        try:
            shopping = await describe_shopping_list(
                self._generate, budget, self.config.max_attempts
            )
        except Exception as exc:
            log.exception("pipeline_shopping_failed")
            result.errors.append(f"shopping: {exc}")
            return result
        result.shopper_response = shopping
        result.steps.append(shopping_step(shopping))

        log.info("pipeline_completed", steps=len(result.steps), errors=len(result.errors))
        return result
