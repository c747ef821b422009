"""
Cron routes.

The periodic sweep is the durable backstop for deferred checks that
never ran (worker restarts, scale-down).
"""

from typing import Optional
import structlog

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from config import settings
from models.sweep import SweepSummary
from exceptions import AppError, UnauthorizedError
from services.readiness_service import get_readiness_scheduler

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/cron", tags=["Cron"])


def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def verify_cron_secret(authorization: Optional[str]) -> None:
    """
    Require "Bearer <CRON_SECRET>".

    Fails closed: without a configured secret every call is rejected.

    Raises:
        UnauthorizedError: If the secret is missing or wrong
    """
    if not settings.cron_secret:
        logger.warning("cron_secret_not_configured")
        raise UnauthorizedError("Cron secret not configured")

    if authorization != f"Bearer {settings.cron_secret}":
        logger.warning("cron_unauthorized")
        raise UnauthorizedError()


# ===================
# ROUTES
# ===================

@router.get("/process-messages", response_model=SweepSummary)
def process_messages(authorization: Optional[str] = Header(None)):
    """
    Process every pending submission that went quiet.

    Returns:
        SweepSummary with processed/succeeded/failed counts

    Raises:
        401: Missing or wrong bearer token
        500: Pending store unavailable
    """
    try:
        verify_cron_secret(authorization)
        return get_readiness_scheduler().sweep()
    except Exception as e:
        return handle_error(e)
