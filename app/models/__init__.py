# Shared data models
from app.models.knowledge_base import (
    NEVER_REFRESHED,
    REFRESH_FIELDS,
    KnowledgeBaseRecord,
    RefreshSuccess,
    RefreshFailure,
    RefreshOutcome,
    RefreshCycleSummary,
)

__all__ = [
    "NEVER_REFRESHED",
    "REFRESH_FIELDS",
    "KnowledgeBaseRecord",
    "RefreshSuccess",
    "RefreshFailure",
    "RefreshOutcome",
    "RefreshCycleSummary",
]
