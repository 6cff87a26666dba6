"""
Knowledge Base Catalog

Supplies projected snapshots of the configured knowledge bases and records
the timestamp of each successful refresh.

The YAML-backed catalog keeps every knowledge base under a single
``knowledge_bases`` key:

    knowledge_bases:
      - kb_id: kb-hr-faq
        last_refresh_datetime: "2026-10-18T06:00:00+00:00"
        refresh_frequency_in_hours: 24
        sharepoint_site_id: contoso.sharepoint.com,1234
        sharepoint_list_id: 9f1c...
        question_field: Title
        answer_fields: '["Answer"]'
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

import yaml
from pydantic import ValidationError

from app.models.knowledge_base import KnowledgeBaseRecord

logger = logging.getLogger(__name__)

# Shared by every catalog instance; triggers may overlap
_lock = threading.Lock()


class CatalogUnavailableError(Exception):
    """
    Raised when the backing store cannot be read or written.
    Fatal to a refresh cycle.
    """

    pass


class KnowledgeBaseNotFoundError(Exception):
    """Raised when a refresh is recorded for an unknown knowledge base."""

    pass


class KnowledgeBaseCatalog(Protocol):
    """Read/write access to the knowledge base catalog."""

    def get_all(
        self, fields: Optional[Iterable[str]] = None
    ) -> List[KnowledgeBaseRecord]: ...

    def record_refresh(self, kb_id: str, refreshed_at: datetime) -> None: ...


class YamlKnowledgeBaseCatalog:
    """Catalog stored as a YAML document on local disk."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = _lock

    def get_all(
        self, fields: Optional[Iterable[str]] = None
    ) -> List[KnowledgeBaseRecord]:
        """
        Load every configured knowledge base.

        Args:
            fields: Field names to keep (kb_id is always kept). None keeps all.

        Returns:
            List of KnowledgeBaseRecord, in catalog order

        Raises:
            CatalogUnavailableError: file missing, unreadable or malformed
        """
        with self._lock:
            entries = self._load()

        keep = None if fields is None else {"kb_id", *fields}
        records = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise CatalogUnavailableError(
                    f"Catalog entry {idx} in {self.path} is not a mapping"
                )
            if keep is not None:
                entry = {k: v for k, v in entry.items() if k in keep}
            try:
                records.append(KnowledgeBaseRecord(**entry))
            except ValidationError as e:
                raise CatalogUnavailableError(
                    f"Invalid catalog entry {idx} in {self.path}: {e}"
                ) from e

        logger.debug(f"Loaded {len(records)} knowledge bases from {self.path}")
        return records

    def record_refresh(self, kb_id: str, refreshed_at: datetime) -> None:
        """Persist the last refresh timestamp for one knowledge base."""
        with self._lock:
            entries = self._load()
            for entry in entries:
                if isinstance(entry, dict) and entry.get("kb_id") == kb_id:
                    entry["last_refresh_datetime"] = refreshed_at.isoformat()
                    break
            else:
                raise KnowledgeBaseNotFoundError(
                    f"Knowledge base {kb_id} is not in the catalog"
                )
            self._save(entries)

        logger.info(f"Recorded refresh of {kb_id} at {refreshed_at.isoformat()}")

    def _load(self) -> list:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except OSError as e:
            raise CatalogUnavailableError(
                f"Cannot read catalog {self.path}: {e}"
            ) from e
        except yaml.YAMLError as e:
            raise CatalogUnavailableError(
                f"Catalog {self.path} is not valid YAML: {e}"
            ) from e

        if document is None:
            return []
        if not isinstance(document, dict):
            raise CatalogUnavailableError(
                f"Catalog {self.path} must be a mapping with a 'knowledge_bases' list"
            )
        entries = document.get("knowledge_bases") or []
        if not isinstance(entries, list):
            raise CatalogUnavailableError(
                f"'knowledge_bases' in {self.path} must be a list"
            )
        return entries

    def _save(self, entries: list) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                yaml.safe_dump(
                    {"knowledge_bases": entries},
                    f,
                    sort_keys=False,
                    allow_unicode=True,
                )
            tmp_path.replace(self.path)
        except OSError as e:
            raise CatalogUnavailableError(
                f"Cannot write catalog {self.path}: {e}"
            ) from e
