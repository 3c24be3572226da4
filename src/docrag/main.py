import logging

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from docrag.api import router as documents_router
from docrag.api import shutdown_pipeline
from docrag.config import PipelineSettings
from docrag.logging_config import configure_logging
from docrag.telemetry import emit_app_startup_event

configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Document Analysis API")
app.include_router(documents_router)


@app.on_event("startup")
async def _startup() -> None:
    emit_app_startup_event()


@app.on_event("shutdown")
async def _shutdown() -> None:
    """Close the shared remote client."""

    await shutdown_pipeline()


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Report whether the remote completion service is configured."""
    settings = PipelineSettings.from_env()
    missing = []
    if not settings.remote_base_url:
        missing.append("DOCRAG_REMOTE_BASE_URL")
    if not settings.remote_api_token:
        missing.append("DOCRAG_REMOTE_API_TOKEN")
    if missing:
        raise HTTPException(status_code=503, detail=f"Missing configuration: {', '.join(missing)}")

    return "ok"
