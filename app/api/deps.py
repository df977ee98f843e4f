from fastapi import HTTPException, Request

from app.db import SessionLocal
from app.services.deploy_coordinator import DeployCoordinator
from app.services.webhook_gateway import WebhookGateway


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_coordinator(request: Request) -> DeployCoordinator:
    coordinator = getattr(request.app.state, "deploy_coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Deploy coordinator is not running")
    return coordinator


def get_gateway(request: Request) -> WebhookGateway:
    return WebhookGateway(get_coordinator(request))
