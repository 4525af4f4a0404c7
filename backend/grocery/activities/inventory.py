"""Inventory stage — splits the plan's ingredients into available and missing.

Pure local computation against inventory.json; the model is not consulted.
The file is required: without it "nothing in the pantry" and "pantry
unknown" are indistinguishable, so its absence fails the stage.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from temporalio import activity
from temporalio.exceptions import ApplicationError

from grocery.config import settings
from grocery.errors import ReferenceDataMissing
from grocery.models.contracts import (
    CheckInventoryInput,
    InventoryRecord,
    InventoryResult,
    MealPlan,
)
from grocery.utils.reference_data import require_inventory

log = structlog.get_logger("inventory")


def partition_ingredients(meal_plan: MealPlan, records: list[InventoryRecord]) -> InventoryResult:
    """Case-insensitive split of the plan's distinct ingredients by inventory name."""
    stocked = {r.name.strip().casefold() for r in records}
    available: list[str] = []
    missing: list[str] = []
    for ingredient in meal_plan.distinct_ingredients():
        (available if ingredient.casefold() in stocked else missing).append(ingredient)
    return InventoryResult(available=available, missing=missing)


def run_inventory_check(
    meal_plan: MealPlan,
    data_dir: str | Path | None = None,
    filename: str | None = None,
) -> InventoryResult:
    """Load the inventory and partition the plan against it.

    Raises ReferenceDataMissing when inventory.json cannot be found.
    """
    records = require_inventory(filename or settings.inventory_file, data_dir or settings.data_dir)
    result = partition_ingredients(meal_plan, records)
    log.info(
        "inventory_stage_complete",
        records=len(records),
        available=len(result.available),
        missing=len(result.missing),
    )
    return result


@activity.defn
async def check_inventory(input: CheckInventoryInput) -> InventoryResult:
    try:
        return run_inventory_check(input.meal_plan)
    except ReferenceDataMissing as exc:
        log.error("inventory_file_missing", error=str(exc))
        raise ApplicationError(str(exc), non_retryable=True) from exc
