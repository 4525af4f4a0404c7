"""Bounded ask-validate-retry loop around a single model call.

Only validation failures are retried. Exceptions raised by the model call
itself (transport, auth, rate limits) belong to the caller and propagate
unchanged, as does task cancellation.
"""

from __future__ import annotations

import structlog

from grocery.errors import RetryExhausted
from grocery.pipeline.validator import Invalid, ResponseSchema, Valid, validate
from grocery.utils.llm import TextGenerator

log = structlog.get_logger("retry")

DEFAULT_MAX_ATTEMPTS = 3

CORRECTIVE_SUFFIX = (
    "\n\nYour previous reply was rejected: {reason}.\n"
    "Respond with ONLY a single JSON object that exactly matches this schema, "
    "with no extra keys, no missing keys, no markdown and no surrounding text:\n"
    "{shape}"
)


def corrective_prompt(base_prompt: str, schema: ResponseSchema, reason: str) -> str:
    """The base prompt plus the strict-schema directive used on every retry."""
    return base_prompt + CORRECTIVE_SUFFIX.format(reason=reason, shape=schema.describe())


async def run_with_retry(
    generate: TextGenerator,
    system_prompt: str,
    base_prompt: str,
    schema: ResponseSchema,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Valid:
    """Ask the model until its reply validates against ``schema``.

    Calls ``generate`` at most ``max_attempts`` times. Raises RetryExhausted,
    carrying the last raw reply, when none of them validate.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    last_raw = ""
    last_reason = "no attempt made"
    for attempt in range(1, max_attempts + 1):
        prompt = (
            base_prompt if attempt == 1 else corrective_prompt(base_prompt, schema, last_reason)
        )
        last_raw = await generate(system_prompt, prompt)
        outcome = validate(last_raw, schema)

        if isinstance(outcome, Valid):
            log.info("llm_attempt_valid", schema=schema.name, attempt=attempt)
            return outcome

        assert isinstance(outcome, Invalid)
        last_reason = outcome.reason
        log.warning(
            "llm_attempt_invalid",
            schema=schema.name,
            attempt=attempt,
            max_attempts=max_attempts,
            reason=last_reason,
            raw_preview=last_raw[:200],
        )

    log.error(
        "llm_retry_exhausted",
        schema=schema.name,
        attempts=max_attempts,
        reason=last_reason,
    )
    raise RetryExhausted(schema.name, max_attempts, last_raw, last_reason)
