"""Grocery pipeline contract models.

Every stage consumes the previous stage's model and the coordinator returns
them verbatim, so these shapes double as the wire format: camelCase on the
way out (``totalCost``, ``categorizedItems``), camelCase or snake_case on the
way in.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


def dedupe_casefold(values: list[str]) -> list[str]:
    """Drop blanks and case-insensitive repeats, keeping first-seen spelling and order."""
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        cleaned = value.strip()
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        out.append(cleaned)
    return out


# === Request ===


class GroceryRequest(_WireModel):
    description: str
    number_of_meals: int = Field(default=3, ge=1, le=21)
    dietary_preferences: list[str] = []
    budget: float | None = Field(default=None, ge=0)  # overrides the configured ceiling


# === Stage Results ===


class Meal(_WireModel):
    model_config = ConfigDict(frozen=True)

    name: str
    ingredients: list[str] = []
    notes: str = ""

    @field_validator("ingredients")
    @classmethod
    def _ordered_set(cls, v: list[str]) -> list[str]:
        return dedupe_casefold(v)


class MealPlan(_WireModel):
    meals: list[Meal] = []

    def distinct_ingredients(self) -> list[str]:
        """Every ingredient across all meals, deduplicated case-insensitively."""
        return dedupe_casefold([i for meal in self.meals for i in meal.ingredients])


class InventoryRecord(_WireModel):
    name: str
    quantity: int = 0
    expiry: str | None = None


class InventoryResult(_WireModel):
    available: list[str] = []
    missing: list[str] = []

    @model_validator(mode="after")
    def _disjoint(self) -> InventoryResult:
        overlap = {a.casefold() for a in self.available} & {m.casefold() for m in self.missing}
        if overlap:
            raise ValueError(f"items both available and missing: {sorted(overlap)}")
        return self


class BudgetResult(_WireModel):
    items: list[str] = []
    total_cost: float = 0.0
    note: str = ""


class ShoppingResult(_WireModel):
    categorized_items: dict[str, str] = {}


# === Activity Input/Output ===


class PlanMealsInput(_WireModel):
    request: GroceryRequest
    max_attempts: int | None = None


class PlanMealsOutput(_WireModel):
    meal_plan: MealPlan
    degraded: bool = False
    note: str = ""


class CheckInventoryInput(_WireModel):
    meal_plan: MealPlan


class FitBudgetInput(_WireModel):
    inventory: InventoryResult
    budget_ceiling: float | None = None
    max_attempts: int | None = None


class DescribeItemsInput(_WireModel):
    budget: BudgetResult
    max_attempts: int | None = None


# === Pipeline Result ===


class PipelineResult(_WireModel):
    steps: list[str] = []
    errors: list[str] = []
    meal_plan_response: MealPlan | None = None
    inventory_response: InventoryResult | None = None
    budget_response: BudgetResult | None = None
    shopper_response: ShoppingResult | None = None


# === Workflow State (returned by query) ===

PipelineStep = Literal["waiting", "plan", "inventory", "budget", "shopping", "completed", "failed"]


class PipelineState(_WireModel):
    step: PipelineStep = "waiting"
    result: PipelineResult = Field(default_factory=PipelineResult)
