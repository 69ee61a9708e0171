from __future__ import annotations

import asyncio

from fastapi import FastAPI

from src.common.logging import setup_logging
from src.common.metrics import setup_metrics
from src.common.telemetry import setup_otel

from . import deps
from .api import router
from .kafka_loop import start_kafka_consumer

settings = deps.get_settings()
setup_logging(settings.log_level)

app = FastAPI(title=deps.SERVICE_NAME)
setup_metrics(app, deps.SERVICE_NAME)
setup_otel(app, deps.SERVICE_NAME, settings.otel_exporter_otlp_endpoint)

_consumer_task: asyncio.Task[None] | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _consumer_task
    orchestrator = deps.get_orchestrator()
    await orchestrator.start()
    _consumer_task = start_kafka_consumer(deps.get_settings(), orchestrator)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _consumer_task
    if _consumer_task is not None:
        _consumer_task.cancel()
        try:
            await _consumer_task
        except asyncio.CancelledError:
            pass
        _consumer_task = None
    await deps.get_orchestrator().close()
    deps.reset_orchestrator()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(router)
