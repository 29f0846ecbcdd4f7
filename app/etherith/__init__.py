"""
Etherith Archive Core Package

Content-addressed archival and tiered access control for cultural artifacts.
"""
from app.etherith.core_types import (
    AccessDecision,
    AccessLevel,
    ContentType,
    DenyReason,
    IdentityContext,
    ListFilters,
    Location,
    MemoryRecord,
    StoredContent,
    generate_memory_id,
)

__all__ = [
    "AccessDecision",
    "AccessLevel",
    "ContentType",
    "DenyReason",
    "IdentityContext",
    "ListFilters",
    "Location",
    "MemoryRecord",
    "StoredContent",
    "generate_memory_id",
]
