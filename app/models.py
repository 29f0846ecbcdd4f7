import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)  # external auth uid
    email = Column(String(320), unique=True, nullable=False)
    username = Column(String(64), unique=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    avatar_url = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    cultural_background = Column(JSON, nullable=False, default=list)
    location = Column(JSON, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    verification_level = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CulturalCommunity(Base):
    __tablename__ = "cultural_communities"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    cultural_focus = Column(JSON, nullable=False, default=list)
    location = Column(JSON, nullable=True)  # {country, region, city, coordinates}
    member_count = Column(Integer, default=0, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    verification_level = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CommunityMembership(Base):
    __tablename__ = "community_memberships"

    community_id = Column(String(36), ForeignKey("cultural_communities.id"), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id"), primary_key=True)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_memberships_user_id", "user_id"),
    )


class Memory(Base):
    __tablename__ = "memories"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    content_type = Column(String(20), nullable=False)
    content_hash = Column(String(255), nullable=False)
    locator = Column(Text, nullable=False)
    metadata_hash = Column(String(255), nullable=True)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(255), nullable=True)
    cultural_context = Column(JSON, nullable=False, default=list)
    cultural_significance_score = Column(Float, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    is_public = Column(Boolean, default=False, nullable=False)
    access_level = Column(String(20), nullable=False, default="private")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    communities = relationship(
        "MemoryCommunity",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_memories_user_created", "user_id", "created_at", "id"),
        Index("idx_memories_access_created", "access_level", "created_at", "id"),
        Index("idx_memories_content_hash", "content_hash"),
    )


class MemoryCommunity(Base):
    """Association between a memory and the communities it is shared with."""
    __tablename__ = "memory_communities"

    memory_id = Column(String(36), ForeignKey("memories.id"), primary_key=True)
    community_id = Column(String(36), ForeignKey("cultural_communities.id"), primary_key=True)

    __table_args__ = (
        Index("idx_memory_communities_community", "community_id"),
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    event_type = Column(String(50), nullable=False)  # MEMORY_WRITE, MEMORY_READ, ...
    user_id = Column(String(255), nullable=True)
    memory_id = Column(String(36), nullable=True)
    reason_code = Column(String(50), nullable=True)
    meta = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_audit_user_timestamp", "user_id", "timestamp"),
        Index("idx_audit_event_type_timestamp", "event_type", "timestamp"),
    )
