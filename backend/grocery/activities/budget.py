"""Budget stage — fits the available items under a spending ceiling.

The total is always recomputed from prices.json. The model is consulted
only when that total exceeds the ceiling, and the total it reports is
ignored in favour of the recomputation.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from temporalio import activity

from grocery.activities.common import (
    LazyGenerator,
    llm_errors_as_application_errors,
    resolve_max_attempts,
)
from grocery.config import settings
from grocery.errors import RetryExhausted
from grocery.models.contracts import BudgetResult, FitBudgetInput, InventoryResult
from grocery.pipeline.pricing import PriceTable, fits_budget, recompute_total
from grocery.pipeline.retry import run_with_retry
from grocery.pipeline.validator import FieldKind, FieldSpec, Invalid, ResponseSchema, validate
from grocery.utils.llm import TextGenerator
from grocery.utils.prompts import render_prompt
from grocery.utils.reference_data import load_prices

log = structlog.get_logger("budget")

WITHIN_BUDGET_NOTE = "Within budget - no changes needed"
DEFAULT_ADJUSTMENT_NOTE = "Adjusted by LLM"

# totalCost is optional: whatever the model puts there is discarded anyway
BUDGET_SCHEMA = ResponseSchema(
    "BudgetAdjustment",
    (
        FieldSpec("items", FieldKind.STRING_ARRAY, non_empty=True),
        FieldSpec("totalCost", FieldKind.NUMBER, required=False),
        FieldSpec("note", FieldKind.STRING),
    ),
)


def parse_adjustment(raw: str) -> tuple[list[str], str]:
    """Single-shot parse of a budget reply into ``(items, note)``.

    An unusable reply yields ``([], "Failed to parse LLM response: <reason>")``.
    """
    outcome = validate(raw, BUDGET_SCHEMA)
    if isinstance(outcome, Invalid):
        return [], f"Failed to parse LLM response: {outcome.reason}"
    items = [i.strip() for i in outcome.value["items"] if i.strip()]
    return items, outcome.value["note"].strip() or DEFAULT_ADJUSTMENT_NOTE


def build_budget_prompt(
    items: list[str],
    total: float,
    ceiling: float,
    prices: PriceTable,
    default_price: float,
    schema: ResponseSchema = BUDGET_SCHEMA,
) -> str:
    return render_prompt(
        "budget_user",
        items=", ".join(items),
        budget=ceiling,
        total=total,
        prices=json.dumps(prices.as_dict()),
        default_price=default_price,
        schema=schema.describe(),
    )


async def adjust_to_budget(
    generate: TextGenerator,
    inventory: InventoryResult,
    prices: PriceTable,
    *,
    budget_ceiling: float,
    default_price: float,
    max_attempts: int | None = None,
) -> BudgetResult:
    """Return the available items unchanged if affordable, otherwise a model-adjusted list."""
    items = list(inventory.available)
    total = recompute_total(items, prices, default_price)
    log.info("budget_total_computed", items=len(items), total=total, ceiling=budget_ceiling)

    if fits_budget(total, budget_ceiling):
        return BudgetResult(items=items, total_cost=total, note=WITHIN_BUDGET_NOTE)

    schema = BUDGET_SCHEMA.with_key_policy(settings.strict_schema_keys)
    attempts = resolve_max_attempts(max_attempts)
    log.info("budget_over_ceiling", total=total, ceiling=budget_ceiling, max_attempts=attempts)
    try:
        outcome = await run_with_retry(
            generate,
            render_prompt("budget_system", schema=schema.describe()),
            build_budget_prompt(items, total, budget_ceiling, prices, default_price, schema),
            schema,
            attempts,
        )
    except RetryExhausted as exc:
        return BudgetResult(
            items=items,
            total_cost=total,
            note=(
                f"Failed to parse LLM response after {exc.attempts} attempts "
                f"({exc.last_reason}); original list returned."
            ),
        )

    adjusted = [i.strip() for i in outcome.value["items"] if i.strip()]
    if not adjusted:
        return BudgetResult(
            items=items,
            total_cost=total,
            note="Failed to parse LLM response: only blank items; original list returned.",
        )

    new_total = recompute_total(adjusted, prices, default_price)
    reported = outcome.value.get("totalCost")
    if reported is not None and abs(reported - new_total) >= 0.01:
        log.warning("budget_model_total_discarded", reported=reported, recomputed=new_total)
    if not fits_budget(new_total, budget_ceiling):
        log.warning("budget_still_over_ceiling", total=new_total, ceiling=budget_ceiling)

    note = outcome.value["note"].strip() or DEFAULT_ADJUSTMENT_NOTE
    log.info("budget_adjusted", before=len(items), after=len(adjusted), total=new_total)
    return BudgetResult(items=adjusted, total_cost=new_total, note=note)


async def run_budget_stage(
    generate: TextGenerator,
    inventory: InventoryResult,
    *,
    budget_ceiling: float | None = None,
    default_price: float | None = None,
    max_attempts: int | None = None,
    data_dir: str | Path | None = None,
    prices_file: str | None = None,
) -> BudgetResult:
    """Load prices (an absent file means every item costs the default) and fit the budget."""
    prices = load_prices(prices_file or settings.prices_file, data_dir or settings.data_dir)
    return await adjust_to_budget(
        generate,
        inventory,
        prices,
        budget_ceiling=settings.budget_ceiling if budget_ceiling is None else budget_ceiling,
        default_price=settings.default_item_price if default_price is None else default_price,
        max_attempts=max_attempts,
    )


@activity.defn
async def fit_budget(input: FitBudgetInput) -> BudgetResult:
    with llm_errors_as_application_errors("budget fitting"):
        return await run_budget_stage(
            LazyGenerator(),
            input.inventory,
            budget_ceiling=input.budget_ceiling,
            max_attempts=input.max_attempts,
        )
