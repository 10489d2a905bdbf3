from fastapi import APIRouter

from src.casehub.config import settings
from src.casehub.services.realtime.service import change_feed

router = APIRouter(prefix="", tags=["system"])


@router.get("/health")
async def health_check_v1() -> dict:
    """API v1 health endpoint."""
    return {
        "status": "ok",
        "version": "v1",
        "storage": "sql" if settings.use_sql_repos else "memory",
        "change_feed_subscribers": change_feed.subscriber_count,
    }
