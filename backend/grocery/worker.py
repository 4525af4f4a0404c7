"""Temporal worker — registers the grocery workflow and its stage activities.

Run locally with:
    python -m grocery.worker

Requires a running Temporal server; ANTHROPIC_API_KEY is needed only once a
stage actually calls the model.
"""

from __future__ import annotations

import asyncio
import sys

import structlog
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.worker import Worker

from grocery.activities.budget import fit_budget
from grocery.activities.inventory import check_inventory
from grocery.activities.plan import plan_meals
from grocery.activities.shopping import describe_items
from grocery.config import settings
from grocery.logging import configure_logging
from grocery.workflows.grocery_pipeline import GroceryPipelineWorkflow

logger = structlog.get_logger()

ACTIVITIES = [plan_meals, check_inventory, fit_budget, describe_items]

WORKFLOWS = [GroceryPipelineWorkflow]


async def create_temporal_client() -> Client:
    """Create a Temporal client using settings.

    Supports both local Temporal (plain TCP) and Temporal Cloud (TLS + API key).
    """
    if settings.temporal_api_key:
        return await Client.connect(
            target_host=settings.temporal_address,
            namespace=settings.temporal_namespace,
            tls=True,
            api_key=settings.temporal_api_key,
            data_converter=pydantic_data_converter,
        )
    return await Client.connect(
        target_host=settings.temporal_address,
        namespace=settings.temporal_namespace,
        data_converter=pydantic_data_converter,
    )


def build_worker(client: Client, task_queue: str | None = None) -> Worker:
    return Worker(
        client,
        task_queue=task_queue or settings.temporal_task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )


async def run_worker() -> None:
    """Connect to Temporal and run the worker until interrupted."""
    logger.info(
        "worker_connecting",
        address=settings.temporal_address,
        namespace=settings.temporal_namespace,
        task_queue=settings.temporal_task_queue,
    )

    try:
        client = await create_temporal_client()
    except Exception:
        logger.exception(
            "worker_connection_failed",
            address=settings.temporal_address,
            namespace=settings.temporal_namespace,
        )
        raise

    if not settings.anthropic_api_key:
        logger.warning(
            "worker_missing_api_key",
            hint="Stages that call the model will fail until ANTHROPIC_API_KEY is set",
        )

    worker = build_worker(client)
    logger.info(
        "worker_started",
        task_queue=settings.temporal_task_queue,
        workflow_count=len(WORKFLOWS),
        activity_count=len(ACTIVITIES),
    )

    await worker.run()
    logger.info("worker_stopped")


def main() -> None:
    """Entrypoint for `python -m grocery.worker`."""
    configure_logging()
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("worker_fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
