"""
Health check endpoints for the API, the chat store database and the LLM server.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from localchat.core.config import settings
from localchat.core.deps import get_db
from localchat.services.llm_client import get_llm_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _database_status(db: Session) -> dict:
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "unreachable", "error": str(e)}


@router.get("")
async def health_check():
    """
    Basic health check endpoint.

    Returns:
        Simple status message indicating the API is running
    """
    return {
        "status": "ok",
        "service": settings.PROJECT_NAME,
    }


@router.get("/llm")
async def llm_health_check():
    """
    Check LLM server connectivity.

    Returns:
        LLM connection status including provider, model, and any errors
    """
    client = get_llm_client()
    return await client.health_check()


@router.get("/full")
async def full_health_check(db: Session = Depends(get_db)):
    """
    Status of the chat store and the LLM server together.

    "degraded" means the API answers but a dependency does not.
    """
    database_status = _database_status(db)
    llm_status = await get_llm_client().health_check()

    all_healthy = (
        database_status["status"] == "healthy"
        and llm_status.get("status") == "healthy"
    )
    return {
        "status": "healthy" if all_healthy else "degraded",
        "services": {
            "api": {"status": "healthy"},
            "database": database_status,
            "llm": llm_status,
        },
        "config": {
            "llm_provider": settings.LLM_PROVIDER,
            "llm_model": settings.LLM_MODEL,
            "persistence_backend": settings.PERSISTENCE_BACKEND,
        },
    }
