from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.health import router as health_router
from app.api.webhooks import router as webhooks_router
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.metrics import REQUEST_COUNT
from app.services.container_runtime import ComposeContainerRuntime
from app.services.deploy_coordinator import DeployCoordinator
from app.services.git_sync_service import GitSyncService
from app.services.notifications import build_notification_sink


def build_coordinator() -> DeployCoordinator:
    return DeployCoordinator(
        git=GitSyncService(),
        runtime=ComposeContainerRuntime(),
        notifier=build_notification_sink(),
        session_factory=SessionLocal,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    coordinator = build_coordinator()
    app.state.deploy_coordinator = coordinator
    try:
        yield
    finally:
        await coordinator.shutdown()
        app.state.deploy_coordinator = None


configure_logging()
app = FastAPI(title="dployr", lifespan=lifespan)
register_error_handlers(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
    return response


app.include_router(health_router)
app.include_router(webhooks_router)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
