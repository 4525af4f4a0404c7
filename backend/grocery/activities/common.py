"""Shared plumbing for the stage activities.

Stage logic lives in plain async functions that take a TextGenerator; the
``@activity.defn`` wrappers only build the production generator and map
configuration and API faults onto Temporal's retry semantics.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import anthropic
import structlog
from temporalio.exceptions import ApplicationError

from grocery.config import settings
from grocery.utils.llm import TextGenerator, default_generator

log = structlog.get_logger("activities")


def resolve_max_attempts(requested: int | None) -> int:
    return requested if requested is not None else settings.llm_max_attempts


class LazyGenerator:
    """Builds the Anthropic generator on first call.

    Stages that never reach the model (budget already met, empty item list)
    then run without an API key.
    """

    def __init__(self) -> None:
        self._inner: TextGenerator | None = None

    async def __call__(self, system_prompt: str, user_prompt: str) -> str:
        if self._inner is None:
            try:
                self._inner = default_generator()
            except RuntimeError as exc:
                raise ApplicationError(str(exc), non_retryable=True) from exc
        return await self._inner(system_prompt, user_prompt)


@contextmanager
def llm_errors_as_application_errors(stage: str) -> Iterator[None]:
    """Translate Anthropic API failures into Temporal ApplicationErrors.

    Rate limits stay retryable; a 400 is a request we built wrong and will
    not get better on retry.
    """
    try:
        yield
    except anthropic.RateLimitError as e:
        log.warning("stage_rate_limited", stage=stage)
        raise ApplicationError(
            f"Claude rate limited during {stage}: {e}",
            non_retryable=False,
        ) from e
    except anthropic.APIStatusError as e:
        log.error("stage_api_error", stage=stage, status=e.status_code)
        raise ApplicationError(
            f"Claude API error during {stage} ({e.status_code}): {e}",
            non_retryable=e.status_code == 400,
        ) from e
