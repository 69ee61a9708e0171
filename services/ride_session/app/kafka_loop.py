"""Consumer of out-of-band travel status events (driver side)."""

from __future__ import annotations

import asyncio
import logging

from opentelemetry import trace
from pydantic import ValidationError

from src.common.kafka import KafkaConsumer

from . import deps
from .orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer(__name__)


async def handle_message(orchestrator: SessionOrchestrator, value) -> None:
    if not isinstance(value, dict):
        logger.warning("Skipping malformed travel status event: %r", value)
        return
    with _tracer.start_as_current_span("event.consume:travel.status"):
        try:
            applied = orchestrator.handle_status_event(value)
        except ValidationError:
            logger.warning("Skipping travel status event with bad payload: %r", value)
            return
    logger.info("Travel status event %s applied=%s", value.get("status"), applied)


async def _consume(settings: deps.Settings, orchestrator: SessionOrchestrator) -> None:
    assert settings.kafka_brokers is not None
    consumer = KafkaConsumer(
        settings.kafka_brokers,
        settings.travel_status_topic,
        group_id=settings.travel_status_group,
    )
    logger.info("Starting travel status consumer loop")
    async with consumer:
        async for msg in consumer:
            await handle_message(orchestrator, msg.value)


def start_kafka_consumer(
    settings: deps.Settings, orchestrator: SessionOrchestrator
) -> asyncio.Task[None] | None:
    if not settings.kafka_brokers:
        logger.info("Kafka configuration missing. Consumer loop not started")
        return None

    async def runner() -> None:
        try:
            await _consume(settings, orchestrator)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Travel status consumer loop terminated")

    return asyncio.create_task(runner(), name="travel-status-consumer")
