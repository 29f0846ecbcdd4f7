from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.etherith.core_types import AccessLevel, ContentType, Location, MemoryRecord


class SubmissionMetadata(BaseModel):
    """Metadata accompanying an uploaded artifact."""

    content_type: str = Field(..., description="One of image, video, audio, document", examples=["image"])
    title: Optional[str] = Field(None, max_length=255, examples=["Grandmother's wedding photograph"])
    description: Optional[str] = Field(None, max_length=5000)
    mime_type: Optional[str] = Field(None, examples=["image/jpeg"])
    cultural_context: List[str] = Field(default_factory=list, examples=[["yoruba", "wedding"]])
    cultural_significance_score: Optional[float] = Field(
        None, description="Externally computed significance score; stored as given"
    )
    tags: List[str] = Field(default_factory=list)
    access_level: Optional[AccessLevel] = Field(None, description="Defaults to private")
    associated_communities: List[str] = Field(default_factory=list)

    model_config = {
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {
                    "content_type": "image",
                    "title": "Harvest festival, 1962",
                    "mime_type": "image/jpeg",
                    "cultural_context": ["igbo", "new yam festival"],
                    "tags": ["family", "festival"],
                    "access_level": "community",
                    "associated_communities": ["3f6c1c9e-3a55-4a8e-9d7b-1c1f1f0c2b1a"],
                }
            ]
        },
    }


class MetadataUpdate(BaseModel):
    """Owner-editable metadata fields. Unset fields are left unchanged."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    tags: Optional[List[str]] = None
    cultural_context: Optional[List[str]] = None
    cultural_significance_score: Optional[float] = None
    access_level: Optional[AccessLevel] = None
    associated_communities: Optional[List[str]] = None


class MemoryResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    content_type: ContentType
    content_hash: str
    locator: str
    metadata_hash: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    cultural_context: List[str]
    cultural_significance_score: Optional[float] = None
    tags: List[str]
    is_public: bool
    access_level: AccessLevel
    associated_communities: List[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: MemoryRecord) -> "MemoryResponse":
        return cls(**record.model_dump(), is_public=record.is_public)


class MemoryListResponse(BaseModel):
    items: List[MemoryResponse]
    next_cursor: Optional[str] = Field(None, description="Pass back as ?cursor= to fetch the next page")


class UserCreateRequest(BaseModel):
    email: str = Field(..., max_length=320, examples=["ada@example.org"])
    username: str = Field(..., min_length=1, max_length=64, examples=["ada_o"])
    full_name: str = Field(..., min_length=1, max_length=255)
    avatar_url: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=2000)
    cultural_background: List[str] = Field(default_factory=list)
    location: Optional[Location] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    full_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    cultural_background: List[str]
    location: Optional[Location] = None
    is_verified: bool
    verification_level: int
    community_memberships: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class CommunityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    cultural_focus: List[str]
    location: Optional[Location] = None
    member_count: int
    is_verified: bool
    verification_level: int
    created_at: datetime
    updated_at: datetime
