from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_coordinator, get_db
from app.services.deploy_coordinator import DeployCoordinator

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def readiness(
    db: Session = Depends(get_db),
    coordinator: DeployCoordinator = Depends(get_coordinator),
) -> dict[str, object]:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {
        "status": "ready",
        "active_deploys": len(coordinator.active_runs()),
        "timestamp": datetime.now(UTC).isoformat(),
    }
