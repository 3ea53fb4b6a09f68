import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reminder_engine.db import engine
from reminder_engine.errors import EngineError, error_response
from reminder_engine.logging_utils import setup_json_logging
from reminder_engine.scheduler import (
    describe_cadences,
    get_scheduler_status,
    start_scheduler,
    stop_scheduler,
)
from reminder_engine.services.push_notifications import get_push_config_status
from reminder_engine.services.reminder_jobs import REMINDER_JOBS, get_reminder_job
from reminder_engine.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from reminder_engine.settings import get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("reminder_engine.request")
scheduler_logger = logging.getLogger("reminder_engine.scheduler")

app = FastAPI(title=settings.app_name, version="0.1.0")


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
            },
        )


@app.exception_handler(EngineError)
async def handle_engine_error(request: Request, exc: EngineError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        scheduler_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    scheduler_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_reminder_scheduler() -> None:
    if not settings.scheduler_enabled:
        scheduler_logger.info("reminder_scheduler_disabled")
        return
    start_scheduler()
    push_status = get_push_config_status()
    if not push_status["enabled"]:
        scheduler_logger.warning("reminder_push_not_configured")


@app.on_event("shutdown")
async def stop_reminder_scheduler() -> None:
    stop_scheduler()


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "scheduler": get_scheduler_status(),
        "push": get_push_config_status(),
    }


@app.get("/jobs")
def list_jobs() -> dict[str, Any]:
    cadences = describe_cadences()
    return {
        "jobs": [
            {**job.to_dict(), "cadence": cadences.get(job.name)}
            for job in REMINDER_JOBS.values()
        ]
    }


@app.get("/jobs/{job_name}")
def get_job(job_name: str) -> dict[str, Any]:
    job = get_reminder_job(job_name)
    return {
        **job.to_dict(),
        "cadence": describe_cadences().get(job.name),
        "last_run": get_scheduler_status()["last_runs"].get(job.name),
    }
