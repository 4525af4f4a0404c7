"""Plan stage — turns a free-text meal request into a MealPlan.

The model is asked for strict JSON and retried on schema violations. If it
never complies, the last reply is mined heuristically for ingredients and a
single-meal plan is returned, flagged as degraded.
"""

from __future__ import annotations

import structlog
from temporalio import activity

from grocery.activities.common import (
    LazyGenerator,
    llm_errors_as_application_errors,
    resolve_max_attempts,
)
from grocery.config import settings
from grocery.errors import ExtractionFailure, RetryExhausted
from grocery.models.contracts import GroceryRequest, Meal, MealPlan, PlanMealsInput, PlanMealsOutput
from grocery.pipeline.heuristics import extract_for_meal, extract_items
from grocery.pipeline.retry import run_with_retry
from grocery.pipeline.validator import FieldKind, FieldSpec, ResponseSchema
from grocery.utils.llm import TextGenerator
from grocery.utils.prompts import load_prompt, render_prompt

log = structlog.get_logger("plan")

MEAL_SCHEMA = ResponseSchema(
    "Meal",
    (
        FieldSpec("name", FieldKind.STRING),
        FieldSpec("ingredients", FieldKind.STRING_ARRAY),
        FieldSpec("notes", FieldKind.STRING, required=False),
    ),
)

MEAL_PLAN_SCHEMA = ResponseSchema(
    "MealPlan",
    (FieldSpec("meals", FieldKind.OBJECT_ARRAY, non_empty=True, item_schema=MEAL_SCHEMA),),
)

FALLBACK_MEAL_NAME = "Suggested meals"


def build_plan_prompt(request: GroceryRequest, schema: ResponseSchema = MEAL_PLAN_SCHEMA) -> str:
    return render_prompt(
        "plan_user",
        description=request.description.strip() or "any healthy meals",
        number_of_meals=request.number_of_meals,
        preferences=", ".join(request.dietary_preferences) or "none",
        schema=schema.describe(),
    )


def _recover_ingredients(name: str, notes: str) -> list[str]:
    """Ingredients for a meal that came back with an empty list, read from its notes."""
    for attempt in (extract_for_meal, extract_items):
        try:
            return attempt(notes, name)
        except ExtractionFailure:
            continue
    return []


def _materialize(raw_meals: list[dict]) -> MealPlan:
    meals: list[Meal] = []
    for index, raw in enumerate(raw_meals, start=1):
        name = raw["name"].strip() or f"Meal {index}"
        notes = raw.get("notes", "").strip()
        meal = Meal(name=name, ingredients=raw["ingredients"], notes=notes)
        if not meal.ingredients and notes:
            recovered = _recover_ingredients(name, notes)
            log.info("plan_ingredients_recovered", meal=name, count=len(recovered))
            meal = Meal(name=name, ingredients=recovered, notes=notes)
        meals.append(meal)
    return MealPlan(meals=meals)


def fallback_plan(exc: RetryExhausted) -> PlanMealsOutput:
    """Single-meal plan built from the last unparseable reply."""
    reason = f"{exc.attempts} invalid responses, last: {exc.last_reason}"
    try:
        ingredients = extract_items(exc.last_raw)
    except ExtractionFailure as extraction:
        log.error("plan_fallback_empty", reason=extraction.reason)
        return PlanMealsOutput(
            meal_plan=MealPlan(meals=[]),
            degraded=True,
            note=f"Degraded: no meal plan could be recovered ({reason})",
        )

    note = f"Degraded: ingredients recovered heuristically from an unstructured reply ({reason})"
    log.warning("plan_fallback_used", ingredients=len(ingredients))
    return PlanMealsOutput(
        meal_plan=MealPlan(meals=[Meal(name=FALLBACK_MEAL_NAME, ingredients=ingredients, notes=note)]),
        degraded=True,
        note=note,
    )


async def generate_meal_plan(
    generate: TextGenerator,
    request: GroceryRequest,
    max_attempts: int | None = None,
) -> PlanMealsOutput:
    """Ask for a meal plan; degrade to a heuristic single-meal plan if the model never complies."""
    schema = MEAL_PLAN_SCHEMA.with_key_policy(settings.strict_schema_keys)
    attempts = resolve_max_attempts(max_attempts)
    log.info("plan_stage_start", meals_requested=request.number_of_meals, max_attempts=attempts)

    try:
        outcome = await run_with_retry(
            generate,
            load_prompt("plan_system"),
            build_plan_prompt(request, schema),
            schema,
            attempts,
        )
    except RetryExhausted as exc:
        return fallback_plan(exc)

    plan = _materialize(outcome.value["meals"])
    log.info(
        "plan_stage_complete",
        meals=len(plan.meals),
        ingredients=len(plan.distinct_ingredients()),
    )
    return PlanMealsOutput(meal_plan=plan)


@activity.defn
async def plan_meals(input: PlanMealsInput) -> PlanMealsOutput:
    with llm_errors_as_application_errors("meal planning"):
        return await generate_meal_plan(LazyGenerator(), input.request, input.max_attempts)
