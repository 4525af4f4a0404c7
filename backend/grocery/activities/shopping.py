"""Shopping stage — one short description per item on the final list.

1. One batched request for every item (validated, retried)
2. One single-sentence request for each item the batch did not cover
3. Placeholder text for anything still undescribed, including items whose
   single request failed with an API error

Keys in the result are always the item spellings from the budget list, in
that order, whatever casing the model used.
"""

from __future__ import annotations

import json
import re
from typing import Any

import anthropic
import structlog
from temporalio import activity

from grocery.activities.common import (
    LazyGenerator,
    llm_errors_as_application_errors,
    resolve_max_attempts,
)
from grocery.config import settings
from grocery.errors import RetryExhausted
from grocery.models.contracts import (
    BudgetResult,
    DescribeItemsInput,
    ShoppingResult,
    dedupe_casefold,
)
from grocery.pipeline.retry import run_with_retry
from grocery.pipeline.validator import FieldKind, FieldSpec, ResponseSchema
from grocery.utils.llm import TextGenerator
from grocery.utils.prompts import load_prompt, render_prompt

log = structlog.get_logger("shopping")

SHOPPING_SCHEMA = ResponseSchema(
    "ShoppingDescriptions",
    (FieldSpec("categorizedItems", FieldKind.STRING_MAP),),
)

PLACEHOLDER = "Description unavailable for {item}."

_FIRST_SENTENCE = re.compile(r"^(.+?[.!?])(?=\s|$)", re.DOTALL)
_QUOTES = "\"'`“”‘’"


def placeholder_for(item: str) -> str:
    return PLACEHOLDER.format(item=item)


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown fence, with or without a language tag."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = text.removeprefix("```")
    text = re.sub(r"^[A-Za-z]+\n", "", text)
    return text.rsplit("```", 1)[0].strip()


def _first_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        value = list(value.values())
    if isinstance(value, list):
        for element in value:
            found = _first_string(element)
            if found.strip():
                return found
    return ""


def clean_sentence(raw: str) -> str:
    """Reduce a single-item reply to one plain sentence.

    Strips fences and quotes, unwraps a JSON reply to its first string value,
    and keeps only the first sentence. Returns "" when nothing usable is left.
    """
    text = _strip_code_fence(raw or "")
    if text.startswith(("{", "[")):
        try:
            text = _first_string(json.loads(text))
        except json.JSONDecodeError:
            pass
    text = " ".join(text.split()).strip(_QUOTES).strip()
    match = _FIRST_SENTENCE.match(text)
    if match:
        text = match.group(1)
    return text.strip(_QUOTES).strip()


def match_descriptions(items: list[str], described: dict[str, str]) -> dict[str, str]:
    """Map model keys back onto ``items`` case-insensitively.

    Unknown keys and blank descriptions are dropped.
    """
    by_key = {item.casefold(): item for item in items}
    matched: dict[str, str] = {}
    for key, description in described.items():
        item = by_key.get(key.strip().casefold())
        if item is None:
            log.warning("shopping_unknown_key_dropped", key=key)
            continue
        text = description.strip()
        if text and item not in matched:
            matched[item] = text
    return matched


async def _describe_batch(
    generate: TextGenerator, items: list[str], max_attempts: int
) -> dict[str, str]:
    schema = SHOPPING_SCHEMA.with_key_policy(settings.strict_schema_keys)
    try:
        outcome = await run_with_retry(
            generate,
            render_prompt("shopping_system", schema=schema.describe()),
            render_prompt("shopping_user", items=json.dumps(items)),
            schema,
            max_attempts,
        )
    except RetryExhausted as exc:
        log.warning("shopping_batch_exhausted", attempts=exc.attempts, reason=exc.last_reason)
        return {}
    return match_descriptions(items, outcome.value["categorizedItems"])


async def _describe_one(generate: TextGenerator, item: str) -> str:
    try:
        raw = await generate(
            load_prompt("shopping_item_system"),
            render_prompt("shopping_item_user", item=item),
        )
    except anthropic.APIError as exc:
        # batch descriptions already in hand survive a failed single call
        log.warning("shopping_item_call_failed", item=item, error=str(exc))
        return placeholder_for(item)
    sentence = clean_sentence(raw)
    if not sentence:
        log.warning("shopping_item_placeholder", item=item)
        return placeholder_for(item)
    return sentence


async def describe_shopping_list(
    generate: TextGenerator,
    budget: BudgetResult,
    max_attempts: int | None = None,
) -> ShoppingResult:
    """Describe every item in ``budget``; each one ends up with non-empty text."""
    items = dedupe_casefold(budget.items)
    if not items:
        return ShoppingResult(categorized_items={})

    attempts = resolve_max_attempts(max_attempts)
    batched = await _describe_batch(generate, items, attempts)
    log.info("shopping_batch_complete", items=len(items), described=len(batched))

    descriptions: dict[str, str] = {}
    for item in items:
        # at most one outstanding model call per request
        descriptions[item] = batched.get(item) or await _describe_one(generate, item)

    return ShoppingResult(categorized_items=descriptions)


@activity.defn
async def describe_items(input: DescribeItemsInput) -> ShoppingResult:
    with llm_errors_as_application_errors("shopping descriptions"):
        return await describe_shopping_list(LazyGenerator(), input.budget, input.max_attempts)
