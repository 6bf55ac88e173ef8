import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from autoprint.api.v1.events import router as events_router
from autoprint.api.v1.jobs import router as jobs_router
from autoprint.api.v1.metrics import router as metrics_router
from autoprint.api.v1.queue import router as queue_router
from autoprint.collaborators.inspector import LocalDocumentInspector
from autoprint.collaborators.messaging import HttpMessagingChannel, LoggingMessagingChannel
from autoprint.collaborators.printer import CupsPrinterDriver
from autoprint.db.session import AsyncSessionLocal, init_models
from autoprint.services.builder import OrchestratorBuilder
from autoprint.settings import settings

logger = logging.getLogger("uvicorn")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_models()

    if settings.MESSAGING_API_URL:
        messaging = HttpMessagingChannel(settings.MESSAGING_API_URL, api_token=settings.MESSAGING_API_TOKEN or None)
    else:
        logger.warning("MESSAGING_API_URL not set, payer messages will only be logged")
        messaging = LoggingMessagingChannel()

    orchestrator = (
        OrchestratorBuilder(settings)
        .with_session_factory(AsyncSessionLocal)
        .with_inspector(LocalDocumentInspector(settings.PRICE_PER_PAGE, upload_dir=settings.UPLOAD_DIR))
        .with_printer(CupsPrinterDriver())
        .with_messaging(messaging)
        .build()
    )
    await orchestrator.start()
    app.state.orchestrator = orchestrator

    yield

    # Shutdown
    await orchestrator.stop()
    if isinstance(messaging, HttpMessagingChannel):
        await messaging.close()

app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan
)

app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
app.include_router(queue_router, prefix="/api/v1/queue", tags=["queue"])
app.include_router(events_router, prefix="/api/v1", tags=["events"])
app.include_router(metrics_router, tags=["metrics"])

@app.get("/health")
async def health():
    return {"status": "ok"}
