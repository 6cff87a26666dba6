"""
Knowledge Base Refresh API Routes

POST /api/refresh - Refresh all knowledge bases due for a refresh

Per-knowledge-base outcomes are reported as events and logs only; the caller
sees a failure solely when the catalog cannot be read.
"""

import hmac
import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status

from app.config import Settings, get_settings
from app.services.catalog import CatalogUnavailableError, YamlKnowledgeBaseCatalog
from app.services.event_reporter import LoggingEventReporter
from app.services.refresh_scheduler import RefreshScheduler
from app.services.refresher import HttpKnowledgeBaseRefresher

logger = logging.getLogger(__name__)
router = APIRouter()


@lru_cache
def get_refresher(
    base_url: str, api_key: str, timeout: int
) -> HttpKnowledgeBaseRefresher:
    """One refresher (and HTTP session) per refresh service configuration."""
    return HttpKnowledgeBaseRefresher(
        base_url=base_url, api_key=api_key, timeout=timeout
    )


def get_refresh_scheduler(
    settings: Settings = Depends(get_settings),
) -> RefreshScheduler:
    """Build the scheduler and its collaborators from settings."""
    return RefreshScheduler(
        catalog=YamlKnowledgeBaseCatalog(settings.catalog_path),
        refresher=get_refresher(
            settings.refresh_service_url,
            settings.refresh_service_key,
            settings.refresh_timeout,
        ),
        reporter=LoggingEventReporter(),
    )


def verify_refresh_key(
    x_refresh_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject the trigger when a shared key is configured and not matched."""
    expected = settings.refresh_trigger_key
    if not expected:
        return
    if not x_refresh_key or not hmac.compare_digest(
        x_refresh_key.encode(), expected.encode()
    ):
        logger.warning("Rejected refresh trigger with missing or invalid key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh key",
        )


@router.post(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(verify_refresh_key)],
)
async def refresh_all_knowledge_bases(
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
):
    """
    Run one refresh cycle over every configured knowledge base.

    Returns 204 once every due knowledge base has been attempted, whatever the
    individual outcomes. Returns 503 if the catalog is unavailable.
    """
    try:
        await scheduler.run_refresh_cycle()
    except CatalogUnavailableError as e:
        logger.error(f"Knowledge base catalog unavailable: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Knowledge base catalog unavailable: {str(e)}",
        )
    except Exception as e:
        logger.error(f"Error in refresh endpoint: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to run refresh cycle: {str(e)}",
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
