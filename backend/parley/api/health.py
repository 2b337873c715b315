import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parley.config import settings
from parley.database import get_db
from parley.redis import client as redis_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db)) -> dict:
    """Database is required; Redis is optional and reported as "disabled" when not configured."""
    if not settings.REDIS_URL:
        redis_state = "disabled"
    else:
        redis_state = "connected" if await redis_client.ping() else "unavailable"

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("health check: database unreachable: %s", exc)
        return {"status": "unhealthy", "database": "disconnected", "redis": redis_state, "error": str(exc)}
    return {"status": "healthy", "database": "connected", "redis": redis_state}
