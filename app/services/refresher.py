"""
Knowledge Base Refresher

Asks the external refresh service to re-sync one knowledge base from its
source list. The call is network- and data-bound and may fail for any
reason (connectivity, authorization, malformed source data, quota).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol
from urllib.parse import quote

import requests

from app.models.knowledge_base import KnowledgeBaseRecord

logger = logging.getLogger(__name__)


class KnowledgeBaseRefreshError(Exception):
    """
    Raised when the refresh service rejects or fails a refresh.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class KnowledgeBaseRefresher(Protocol):
    async def refresh(self, record: KnowledgeBaseRecord) -> datetime:
        """Refresh one knowledge base and return the new refresh timestamp (UTC)."""
        ...


def _extract_error_detail(response: requests.Response) -> str:
    """Pull a human-readable message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason or "unknown error"

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("detail"):
            return str(body["detail"])
    return response.reason or "unknown error"


def _parse_refreshed_at(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring unparseable refreshed_at value: {value!r}")
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class HttpKnowledgeBaseRefresher:
    """Refresher that calls the refresh service over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: int = 300,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    async def refresh(self, record: KnowledgeBaseRecord) -> datetime:
        # requests is blocking; keep the event loop free while the sync runs
        return await asyncio.to_thread(self._refresh_sync, record)

    def _refresh_sync(self, record: KnowledgeBaseRecord) -> datetime:
        kb_path = quote(record.kb_id, safe="")
        url = f"{self.base_url}/knowledgebases/{kb_path}/refresh"
        headers = {}
        if self.api_key:
            headers["Ocp-Apim-Subscription-Key"] = self.api_key

        logger.info(f"Requesting refresh of KB {record.kb_id}")
        try:
            response = self.session.post(
                url,
                json=record.source_locators(),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise KnowledgeBaseRefreshError("timeout") from e
        except requests.RequestException as e:
            raise KnowledgeBaseRefreshError(f"Refresh service unreachable: {e}") from e

        if not response.ok:
            detail = _extract_error_detail(response)
            raise KnowledgeBaseRefreshError(
                f"Refresh service returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        refreshed_at = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                refreshed_at = _parse_refreshed_at(body.get("refreshed_at"))

        return refreshed_at or datetime.now(timezone.utc)
