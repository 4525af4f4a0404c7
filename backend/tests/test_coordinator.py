"""Tests for the in-process pipeline coordinator.

The model is an AsyncMock whose side effects script the replies in call
order: plan, then budget (only when over budget), then shopping.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from grocery.config import settings
from grocery.models.contracts import GroceryRequest
from grocery.workflows.coordinator import GroceryPipeline, PipelineConfig

PLAN_REPLY = json.dumps(
    {
        "meals": [
            {"name": "Egg Fried Rice", "ingredients": ["egg", "rice", "saffron"], "notes": ""},
        ]
    }
)
SHOPPING_REPLY = json.dumps(
    {"categorizedItems": {"egg": "Golden farm eggs.", "rice": "Fluffy long-grain rice."}}
)
REQUEST = GroceryRequest(description="one cheap dinner", number_of_meals=1)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    (tmp_path / "inventory.json").write_text(
        json.dumps({"items": [{"name": "Egg", "quantity": 6}, {"name": "Rice", "quantity": 1}]})
    )
    (tmp_path / "prices.json").write_text(json.dumps({"egg": 0.2, "rice": 1.0}))
    return tmp_path


def _pipeline(generate: AsyncMock, data_dir: Path, **overrides: object) -> GroceryPipeline:
    config = PipelineConfig(
        budget_ceiling=100.0,
        default_price=2.0,
        max_attempts=3,
        data_dir=data_dir,
    )
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return GroceryPipeline(generate, config)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_all_four_stages(self, data_dir: Path) -> None:
        generate = AsyncMock(side_effect=[PLAN_REPLY, SHOPPING_REPLY])
        result = await _pipeline(generate, data_dir).run(REQUEST)

        assert result.errors == []
        assert len(result.steps) == 4
        assert result.steps[0].startswith("plan:")
        assert result.steps[3].startswith("shopping:")
        assert result.meal_plan_response.meals[0].name == "Egg Fried Rice"
        assert result.inventory_response.available == ["egg", "rice"]
        assert result.inventory_response.missing == ["saffron"]
        assert result.budget_response.total_cost == pytest.approx(1.2)
        assert result.budget_response.note == "Within budget - no changes needed"
        assert result.shopper_response.categorized_items == {
            "egg": "Golden farm eggs.",
            "rice": "Fluffy long-grain rice.",
        }
        # within budget: no budget call
        assert generate.await_count == 2

    @pytest.mark.asyncio
    async def test_request_budget_overrides_ceiling(self, data_dir: Path) -> None:
        generate = AsyncMock(
            side_effect=[
                PLAN_REPLY,
                '{"items": ["egg"], "totalCost": 99, "note": "Dropped rice"}',
                json.dumps({"categorizedItems": {"egg": "Golden farm eggs."}}),
            ]
        )
        request = GroceryRequest(description="x", number_of_meals=1, budget=0.5)
        result = await _pipeline(generate, data_dir).run(request)

        assert result.errors == []
        assert result.budget_response.items == ["egg"]
        assert result.budget_response.total_cost == pytest.approx(0.2)
        assert result.shopper_response.categorized_items == {"egg": "Golden farm eggs."}
        assert generate.await_count == 3


class TestDegradedAndFailedStages:
    @pytest.mark.asyncio
    async def test_degraded_plan_recorded_and_pipeline_continues(self, data_dir: Path) -> None:
        prose = "Try these:\n- egg\n- rice"
        generate = AsyncMock(side_effect=[prose, prose, prose, SHOPPING_REPLY])
        result = await _pipeline(generate, data_dir).run(REQUEST)

        assert len(result.steps) == 4
        assert result.steps[0].endswith("(degraded)")
        assert len(result.errors) == 1
        assert result.errors[0].startswith("plan: Degraded")
        assert result.inventory_response.available == ["egg", "rice"]
        assert result.shopper_response is not None

    @pytest.mark.asyncio
    async def test_missing_inventory_returns_partial_result(self, data_dir: Path) -> None:
        generate = AsyncMock(side_effect=[PLAN_REPLY])
        pipeline = _pipeline(generate, data_dir, inventory_file="pantry-missing-coord-test.json")
        result = await pipeline.run(REQUEST)

        assert result.meal_plan_response is not None
        assert result.inventory_response is None
        assert result.budget_response is None
        assert result.shopper_response is None
        assert len(result.steps) == 1
        assert result.errors[0].startswith("inventory: pantry-missing-coord-test.json not found")

    @pytest.mark.asyncio
    async def test_budget_failure_returns_partial_result(self, data_dir: Path) -> None:
        generate = AsyncMock(side_effect=[PLAN_REPLY, RuntimeError("model unreachable")])
        result = await _pipeline(generate, data_dir, budget_ceiling=0.5).run(REQUEST)

        assert result.inventory_response is not None
        assert result.budget_response is None
        assert result.shopper_response is None
        assert result.errors == ["budget: model unreachable"]

    @pytest.mark.asyncio
    async def test_budget_parse_failure_noted_as_error(self, data_dir: Path) -> None:
        generate = AsyncMock(
            side_effect=[PLAN_REPLY, "nope", "nope", "nope", SHOPPING_REPLY]
        )
        result = await _pipeline(generate, data_dir, budget_ceiling=0.5).run(REQUEST)

        assert result.budget_response.items == ["egg", "rice"]
        assert result.budget_response.total_cost == pytest.approx(1.2)
        assert result.errors[0].startswith("budget: Failed to parse LLM response")
        assert result.shopper_response is not None

    @pytest.mark.asyncio
    async def test_shopping_failure_returns_partial_result(self, data_dir: Path) -> None:
        generate = AsyncMock(side_effect=[PLAN_REPLY, ConnectionError("socket closed")])
        result = await _pipeline(generate, data_dir).run(REQUEST)

        assert result.budget_response is not None
        assert result.shopper_response is None
        assert result.errors == ["shopping: socket closed"]
        assert len(result.steps) == 3

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, data_dir: Path) -> None:
        generate = AsyncMock(side_effect=[PLAN_REPLY, asyncio.CancelledError()])
        with pytest.raises(asyncio.CancelledError):
            await _pipeline(generate, data_dir).run(REQUEST)


class TestConfigAndContext:
    def test_config_from_settings_with_overrides(self) -> None:
        with patch.object(settings, "budget_ceiling", 55.0):
            config = PipelineConfig.from_settings(max_attempts=7)
        assert config.budget_ceiling == 55.0
        assert config.max_attempts == 7
        assert config.default_price == settings.default_item_price

    def test_default_config_built_from_settings(self) -> None:
        pipeline = GroceryPipeline(AsyncMock())
        assert pipeline.config.budget_ceiling == settings.budget_ceiling

    @pytest.mark.asyncio
    async def test_request_id_bound_during_run(self, data_dir: Path) -> None:
        seen: list[object] = []

        async def generate(system_prompt: str, user_prompt: str) -> str:
            seen.append(structlog.contextvars.get_contextvars().get("request_id"))
            return PLAN_REPLY if len(seen) == 1 else SHOPPING_REPLY

        await _pipeline(generate, data_dir).run(REQUEST, request_id="req-123")  # type: ignore[arg-type]
        assert seen == ["req-123", "req-123"]
        assert "request_id" not in structlog.contextvars.get_contextvars()
