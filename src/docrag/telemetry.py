"""Structured pipeline events written through the JSON log formatter."""

from __future__ import annotations
import logging
import os
import platform
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from docrag.errors import PipelineCancelledError, PipelineStageError, RemoteServiceError

LOGGER = logging.getLogger("docrag.telemetry")

_ENV_KEYS_TO_LOG: tuple[str, ...] = (
    "DOCRAG_REMOTE_BASE_URL",
    "DOCRAG_REQUEST_TIMEOUT_SECONDS",
    "DOCRAG_CACHE_DIR",
    "DOCRAG_CACHE_TTL_SECONDS",
    "DOCRAG_BATCH_SIZE",
    "DOCRAG_MAX_ATTEMPTS",
    "DOCRAG_CONSOLIDATION_TOKEN_THRESHOLD",
    "DOCRAG_MAX_CONSOLIDATION_ROUNDS",
    "DOCRAG_DETECT_DOCUMENT_TYPE",
)


def _describe_error(error: BaseException) -> dict[str, Any]:
    described: dict[str, Any] = {"type": error.__class__.__name__, "message": str(error)}
    if isinstance(error, PipelineStageError):
        described["phase"] = error.phase
    if isinstance(error, RemoteServiceError) and error.status_code is not None:
        described["status_code"] = error.status_code
    return described


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    run_id: str | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
    **details: Any,
) -> None:
    """Log one ``{"step": ..., "details": ..., "error": ...}`` record.

    ``error`` is summarised as type, message, failed phase and upstream status.
    """

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step}
    if run_id:
        event["run_id"] = run_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details:
        event["details"] = details
    if error is not None:
        event["error"] = _describe_error(error)

    getattr(logger, level.lower(), logger.info)(event)


def emit_app_startup_event() -> None:
    log_event(
        LOGGER,
        "app.startup",
        env={key: os.getenv(key) for key in _ENV_KEYS_TO_LOG if os.getenv(key) is not None},
        token_configured=bool(os.getenv("DOCRAG_REMOTE_API_TOKEN")),
        python=sys.version.split()[0],
        platform=platform.platform(),
    )


def emit_phase_event(
    phase: str,
    *,
    run_id: str | None = None,
    level: str = "info",
    **details: Any,
) -> None:
    log_event(LOGGER, f"pipeline.{phase}", level=level, run_id=run_id, **details)


def emit_remote_call(
    *,
    operation: str,
    status_code: int | None,
    duration_ms: float,
    error: BaseException | None = None,
) -> None:
    log_event(
        LOGGER,
        "remote.call",
        level="warning" if error else "info",
        duration_ms=duration_ms,
        error=error,
        operation=operation,
        status_code=status_code,
    )


def emit_stage_failure(error: PipelineStageError, *, run_id: str | None = None) -> None:
    log_event(LOGGER, f"pipeline.{error.phase}.failed", level="error", run_id=run_id, error=error)


def _log_run(step: str, run_id: str, start: float, **fields: Any) -> None:
    log_event(LOGGER, step, run_id=run_id, duration_ms=(time.perf_counter() - start) * 1000.0, **fields)


@contextmanager
def traced_run(step: str, *, run_id: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Log one completion record for a pipeline run.

    The yielded dict collects result fields while the run progresses; the
    record carries ``outcome`` (``ok``, ``cancelled`` or ``failed``) and the
    failing phase when there is one.
    """

    summary: dict[str, Any] = dict(fields)
    start = time.perf_counter()
    try:
        yield summary
    except PipelineCancelledError as error:
        summary["outcome"] = "cancelled"
        _log_run(step, run_id, start, level="warning", error=error, **summary)
        raise
    except Exception as error:
        summary["outcome"] = "failed"
        _log_run(step, run_id, start, level="error", error=error, **summary)
        raise
    summary["outcome"] = "ok"
    _log_run(step, run_id, start, **summary)


__all__ = [
    "emit_app_startup_event",
    "emit_phase_event",
    "emit_remote_call",
    "emit_stage_failure",
    "log_event",
    "traced_run",
]
