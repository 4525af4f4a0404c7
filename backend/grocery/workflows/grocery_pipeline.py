"""GroceryPipelineWorkflow — one instance per grocery request.

Idles until the ``start`` signal delivers the request, then runs the four
stage activities in order. Signals drive the run; ``get_state`` exposes
progress for polling.
"""

from __future__ import annotations

from datetime import timedelta
from typing import NoReturn

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from grocery.activities.budget import fit_budget
    from grocery.activities.inventory import check_inventory
    from grocery.activities.plan import plan_meals
    from grocery.activities.shopping import describe_items
    from grocery.models.contracts import (
        CheckInventoryInput,
        DescribeItemsInput,
        FitBudgetInput,
        GroceryRequest,
        PipelineResult,
        PipelineState,
        PipelineStep,
        PlanMealsInput,
    )
    from grocery.workflows.coordinator import (
        budget_step,
        inventory_step,
        plan_step,
        shopping_step,
    )


# Temporal retries cover transport faults only; schema retries happen inside the activity.
_STAGE_RETRY = RetryPolicy(maximum_attempts=2)

_LLM_STAGE_TIMEOUT = timedelta(minutes=5)
_LOCAL_STAGE_TIMEOUT = timedelta(seconds=30)


class _StageFailedError(Exception):
    pass


def _failure_message(exc: ActivityError) -> str:
    return str(exc.cause) if exc.cause is not None else str(exc)


@workflow.defn
class GroceryPipelineWorkflow:
    """One instance per request. The result is returned and also queryable."""

    def __init__(self) -> None:
        self.step: PipelineStep = "waiting"
        self.result = PipelineResult()
        self._request: GroceryRequest | None = None

    @workflow.run
    async def run(self) -> PipelineResult:
        await workflow.wait_condition(lambda: self._request is not None)
        assert self._request is not None  # guaranteed by wait condition

        try:
            await self._run_stages(self._request)
        except _StageFailedError:
            self.step = "failed"
            return self.result

        self.step = "completed"
        workflow.logger.info(
            "Grocery pipeline %s completed with %d error(s)",
            workflow.info().workflow_id,
            len(self.result.errors),
        )
        return self.result

    async def _run_stages(self, request: GroceryRequest) -> None:
        # --- Plan ---
        self.step = "plan"
        try:
            planned = await workflow.execute_activity(
                plan_meals,
                PlanMealsInput(request=request),
                start_to_close_timeout=_LLM_STAGE_TIMEOUT,
                retry_policy=_STAGE_RETRY,
            )
        except ActivityError as exc:
            self._record_failure("plan", exc)
        self.result.meal_plan_response = planned.meal_plan
        self.result.steps.append(plan_step(planned))
        if planned.degraded:
            self.result.errors.append(f"plan: {planned.note}")

        # --- Inventory ---
        self.step = "inventory"
        try:
            inventory = await workflow.execute_activity(
                check_inventory,
                CheckInventoryInput(meal_plan=planned.meal_plan),
                start_to_close_timeout=_LOCAL_STAGE_TIMEOUT,
                retry_policy=_STAGE_RETRY,
            )
        except ActivityError as exc:
            self._record_failure("inventory", exc)
        self.result.inventory_response = inventory
        self.result.steps.append(inventory_step(inventory))

        # --- Budget ---
        self.step = "budget"
        try:
            budget = await workflow.execute_activity(
                fit_budget,
                FitBudgetInput(inventory=inventory, budget_ceiling=request.budget),
                start_to_close_timeout=_LLM_STAGE_TIMEOUT,
                retry_policy=_STAGE_RETRY,
            )
        except ActivityError as exc:
            self._record_failure("budget", exc)
        self.result.budget_response = budget
        self.result.steps.append(budget_step(budget))
        if budget.note.startswith("Failed to parse"):
            self.result.errors.append(f"budget: {budget.note}")

        # --- Shopping ---
        self.step = "shopping"
        try:
            shopping = await workflow.execute_activity(
                describe_items,
                DescribeItemsInput(budget=budget),
                start_to_close_timeout=_LLM_STAGE_TIMEOUT,
                retry_policy=_STAGE_RETRY,
            )
        except ActivityError as exc:
            self._record_failure("shopping", exc)
        self.result.shopper_response = shopping
        self.result.steps.append(shopping_step(shopping))

    def _record_failure(self, stage: str, exc: ActivityError) -> NoReturn:
        message = _failure_message(exc)
        workflow.logger.error(
            "%s stage failed for %s: %s", stage, workflow.info().workflow_id, message
        )
        self.result.errors.append(f"{stage}: {message}")
        raise _StageFailedError(stage) from exc

    # --- Signals ---

    @workflow.signal
    async def start(self, request: GroceryRequest) -> None:
        if self._request is not None:
            workflow.logger.warning(
                "start ignored: request already received for %s (step '%s')",
                workflow.info().workflow_id,
                self.step,
            )
            return
        self._request = request

    # --- Query ---

    @workflow.query
    def get_state(self) -> PipelineState:
        return PipelineState(step=self.step, result=self.result)
