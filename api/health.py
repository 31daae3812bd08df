from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import text
from api.dependencies import get_db
from db.repositories.settings_repository import SettingsRepository
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Health check endpoint for monitoring and load balancers.
    Reports database connectivity and whether background jobs are being scheduled.
    """
    try:
        db.execute(text("SELECT 1"))

        scheduler = getattr(request.app.state, "scheduler", None)
        scheduler_status = "running" if scheduler and scheduler.running else "stopped"

        return {
            "status": "healthy",
            "database": "connected",
            "scheduler": scheduler_status,
            "verification": "configured" if SettingsRepository(db).is_verification_configured() else "not configured",
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }
