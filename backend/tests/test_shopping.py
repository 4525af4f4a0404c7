"""Tests for the shopping description stage.

Unit tests (no API key needed) cover:
- Reply cleaning for single-item descriptions
- Case-insensitive key matching and unknown-key dropping
- Per-item fallback and placeholder text
- Activity wrapper
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import pytest

from grocery.activities.shopping import (
    clean_sentence,
    describe_items,
    describe_shopping_list,
    match_descriptions,
    placeholder_for,
)
from grocery.models.contracts import BudgetResult, DescribeItemsInput


def _budget(*items: str) -> BudgetResult:
    return BudgetResult(items=list(items), total_cost=0.0, note="")


def _batch(mapping: dict[str, str]) -> str:
    return json.dumps({"categorizedItems": mapping})


class TestCleanSentence:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Crisp green apples.", "Crisp green apples."),
            ("Crisp apples. Great for pies.", "Crisp apples."),
            ('"Fresh sourdough bread"', "Fresh sourdough bread"),
            ("```\nCrisp apples. Great.\n```", "Crisp apples."),
            ('```json\n{"text": "Creamy milk. Yum"}\n```', "Creamy milk."),
            ('{"egg": "Golden farm eggs!"}', "Golden farm eggs!"),
            ("Costs 2.50 per pack, a bargain.", "Costs 2.50 per pack, a bargain."),
            ("  Rich   dark\nchocolate  ", "Rich dark chocolate"),
            ("", ""),
            ('""', ""),
            ("{}", ""),
        ],
    )
    def test_cleans(self, raw: str, expected: str) -> None:
        assert clean_sentence(raw) == expected


class TestMatchDescriptions:
    def test_keys_matched_case_insensitively_unknown_dropped(self) -> None:
        matched = match_descriptions(
            ["Egg", "rice"],
            {"egg": "Golden farm eggs.", "RICE": "Fluffy rice.", "caviar": "Fancy."},
        )
        assert matched == {"Egg": "Golden farm eggs.", "rice": "Fluffy rice."}

    def test_blank_descriptions_dropped(self) -> None:
        assert match_descriptions(["egg"], {"egg": "   "}) == {}


class TestDescribeShoppingList:
    @pytest.mark.asyncio
    async def test_batch_covers_everything(self) -> None:
        generate = AsyncMock(
            return_value=_batch({"RICE": "Fluffy rice.", "egg": "Golden farm eggs.", "caviar": "x"})
        )
        result = await describe_shopping_list(generate, _budget("Egg", "rice"))

        assert result.categorized_items == {"Egg": "Golden farm eggs.", "rice": "Fluffy rice."}
        assert list(result.categorized_items) == ["Egg", "rice"]
        generate.assert_awaited_once()
        assert '["Egg", "rice"]' in generate.await_args.args[1]

    @pytest.mark.asyncio
    async def test_missing_item_described_individually(self) -> None:
        generate = AsyncMock(
            side_effect=[
                _batch({"egg": "Golden farm eggs."}),
                '"Fluffy jasmine rice. Perfect for bowls."',
            ]
        )
        result = await describe_shopping_list(generate, _budget("egg", "rice"))

        assert result.categorized_items == {
            "egg": "Golden farm eggs.",
            "rice": "Fluffy jasmine rice.",
        }
        assert generate.await_count == 2
        assert generate.await_args_list[1].args[1] == "Product: rice"

    @pytest.mark.asyncio
    async def test_blank_batch_description_falls_back(self) -> None:
        generate = AsyncMock(side_effect=[_batch({"egg": " "}), "Golden eggs."])
        result = await describe_shopping_list(generate, _budget("egg"))
        assert result.categorized_items == {"egg": "Golden eggs."}

    @pytest.mark.asyncio
    async def test_empty_single_reply_gets_placeholder(self) -> None:
        generate = AsyncMock(side_effect=[_batch({"egg": "Golden eggs."}), "   "])
        result = await describe_shopping_list(generate, _budget("egg", "rice"))
        assert result.categorized_items["rice"] == "Description unavailable for rice."
        assert placeholder_for("rice") == "Description unavailable for rice."

    @pytest.mark.asyncio
    async def test_exhausted_batch_describes_each_item(self) -> None:
        generate = AsyncMock(side_effect=["bad", "still bad", "A fine egg.", "Nice rice."])
        result = await describe_shopping_list(generate, _budget("egg", "rice"), max_attempts=2)
        assert result.categorized_items == {"egg": "A fine egg.", "rice": "Nice rice."}
        assert generate.await_count == 4

    @pytest.mark.asyncio
    async def test_empty_list_makes_no_calls(self) -> None:
        generate = AsyncMock()
        result = await describe_shopping_list(generate, _budget())
        assert result.categorized_items == {}
        generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_items_described_once(self) -> None:
        generate = AsyncMock(return_value=_batch({"egg": "Eggs."}))
        result = await describe_shopping_list(generate, _budget("Egg", "egg", " "))
        assert result.categorized_items == {"Egg": "Eggs."}

    @pytest.mark.asyncio
    async def test_every_item_has_non_empty_text(self) -> None:
        generate = AsyncMock(side_effect=[_batch({}), "", "", "ok."])
        result = await describe_shopping_list(generate, _budget("a", "b", "c"))
        assert set(result.categorized_items) == {"a", "b", "c"}
        assert all(text.strip() for text in result.categorized_items.values())

    @pytest.mark.asyncio
    async def test_non_api_error_in_single_call_propagates(self) -> None:
        generate = AsyncMock(side_effect=[_batch({}), ConnectionError("down")])
        with pytest.raises(ConnectionError):
            await describe_shopping_list(generate, _budget("egg"))

    @pytest.mark.asyncio
    async def test_api_error_in_single_call_keeps_batch_results(self) -> None:
        api_error = anthropic.APIStatusError(
            message="overloaded",
            response=MagicMock(status_code=529, headers={}),
            body=None,
        )
        generate = AsyncMock(side_effect=[_batch({"egg": "Golden eggs."}), api_error, "Nice rice."])
        result = await describe_shopping_list(generate, _budget("egg", "milk", "rice"))
        assert result.categorized_items == {
            "egg": "Golden eggs.",
            "milk": "Description unavailable for milk.",
            "rice": "Nice rice.",
        }
        assert generate.await_count == 3


class TestDescribeItemsActivity:
    @pytest.mark.asyncio
    @patch("grocery.activities.shopping.LazyGenerator")
    async def test_activity(self, mock_lazy: MagicMock) -> None:
        mock_lazy.return_value = AsyncMock(return_value=_batch({"milk": "Creamy whole milk."}))
        result = await describe_items(DescribeItemsInput(budget=_budget("milk")))
        assert result.categorized_items == {"milk": "Creamy whole milk."}
