"""
Etherith Archive - Canonical Type Definitions

Domain types shared by the content store client, repository, access
evaluator and orchestrator. These are plain pydantic models; the ORM rows in
app.models are converted to and from them at the repository boundary.
"""
from datetime import datetime
from typing import FrozenSet, List, Optional, Tuple
from enum import Enum
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums - Canonical Values
# ============================================================================

class ContentType(str, Enum):
    """Kinds of artifact the archive accepts."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class AccessLevel(str, Enum):
    """Access tier of an artifact. Authoritative over is_public."""
    PUBLIC = "public"
    COMMUNITY = "community"
    PRIVATE = "private"


class DenyReason(str, Enum):
    """Internal deny reasons; never shown to the requester."""
    UNAUTHENTICATED = "unauthenticated"
    NOT_A_MEMBER = "not_a_member"
    PRIVATE_ARTIFACT = "private_artifact"
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"


class AuditEventType(str, Enum):
    MEMORY_WRITE = "MEMORY_WRITE"
    MEMORY_READ = "MEMORY_READ"
    MEMORY_UPDATE = "MEMORY_UPDATE"
    CONTENT_ORPHANED = "CONTENT_ORPHANED"


# Fields that are write-once on a Memory
IMMUTABLE_MEMORY_FIELDS = frozenset({"id", "user_id", "owner_id", "content_hash"})

# Fields the owner may change after creation
MUTABLE_MEMORY_FIELDS = frozenset({
    "title",
    "description",
    "tags",
    "cultural_context",
    "cultural_significance_score",
    "access_level",
    "associated_communities",
})


# ============================================================================
# Value objects
# ============================================================================

class Location(BaseModel):
    """Structured location for users and communities."""
    country: str = Field(..., min_length=1, max_length=100)
    region: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    coordinates: Optional[Tuple[float, float]] = None

    @field_validator("coordinates")
    @classmethod
    def validate_coordinates(cls, v):
        if v is None:
            return v
        lat, lon = v
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise ValueError("coordinates must be [latitude, longitude] within valid ranges")
        return v


class StoredContent(BaseModel):
    """Result of a successful content store upload."""
    model_config = ConfigDict(frozen=True)

    content_hash: str
    locator: str


class IdentityContext(BaseModel):
    """
    Resolved requester for a single request.

    ``identity`` is None for anonymous requests.
    """
    model_config = ConfigDict(frozen=True)

    identity: Optional[str] = None
    verification_level: int = Field(0, ge=0)
    community_memberships: FrozenSet[str] = Field(default_factory=frozenset)

    @property
    def is_anonymous(self) -> bool:
        return self.identity is None

    @classmethod
    def anonymous(cls) -> "IdentityContext":
        return cls()


class MemoryRecord(BaseModel):
    """Canonical archived artifact."""
    id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    content_type: ContentType
    content_hash: str
    locator: str
    metadata_hash: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = None
    cultural_context: List[str] = Field(default_factory=list)
    cultural_significance_score: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    access_level: AccessLevel = AccessLevel.PRIVATE
    associated_communities: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_public(self) -> bool:
        """Derived from access_level; never stored independently."""
        return self.access_level == AccessLevel.PUBLIC


class AccessDecision(BaseModel):
    """Outcome of an access evaluation with trace information."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    matched_rule: str
    reason: Optional[DenyReason] = None
    policy_version: str


class ListFilters(BaseModel):
    """Optional narrowing for listVisibleTo."""
    access_level: Optional[AccessLevel] = None
    owner_id: Optional[str] = None
    content_type: Optional[ContentType] = None
    tag: Optional[str] = None
    cultural_context: Optional[str] = None


# ============================================================================
# ID generation
# ============================================================================

def generate_memory_id() -> str:
    """Collision-resistant random identifier for a new Memory."""
    return str(uuid.uuid4())


def generate_community_id() -> str:
    return str(uuid.uuid4())
