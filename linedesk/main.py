from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from linedesk.config import settings
from linedesk.container import build_container
from linedesk.exceptions import ConfigurationError
from linedesk.logging_config import get_logger, setup_logging
from linedesk.routers import admin, webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="linedesk",
    description="Webhook responder for a messaging-platform storefront account",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(admin.router)


@app.on_event("startup")
async def start_services() -> None:
    missing = settings.missing_required()
    if missing:
        logger.critical("Refusing to start with missing settings", extra={"context": {"missing": missing}})
        raise ConfigurationError(missing)

    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container
    await container.start()
    logger.info(
        "linedesk started",
        extra={
            "context": {
                "admin_user_id": settings.admin_user_id,
                "records": len(container.store),
                "knowledge_entries": len(container.knowledge.entries),
                "global_manual": container.gate.global_manual,
            }
        },
    )


@app.on_event("shutdown")
async def stop_services() -> None:
    container = getattr(app.state, "container", None)
    if container is None:
        return
    await container.stop()
    logger.info("linedesk stopped")


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "ok"


@app.get("/health")
async def health(request: Request):
    container = getattr(request.app.state, "container", None)
    if container is None:
        return {"status": "starting"}
    return {
        "status": "ok",
        "records": len(container.store),
        "queued": container.admission.queue_length,
        "active": container.admission.active_count,
        "knowledge_entries": len(container.knowledge.entries),
        "global_manual": container.gate.global_manual,
    }
