"""
Etherith Artifact Repository

Persists and retrieves Memory records, Users, Communities and memberships.
Converts between ORM rows (app.models) and MemoryRecord at this boundary.

Listings are keyset-paginated on (created_at DESC, id DESC): a cursor names
the last row returned, so rows inserted later never shift pages a caller has
already seen.
"""
import base64
import itertools
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import and_, or_, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Query, Session

from app.errors import (
    ConstraintViolation,
    DuplicateIdentifier,
    ImmutableFieldViolation,
    InvalidCursor,
    NotFoundError,
    RepositoryTimeout,
    RepositoryUnavailable,
    ValidationError,
)
from app.models import AuditEvent, CommunityMembership, CulturalCommunity, Memory, MemoryCommunity, User
from app.sanitization import normalize_tag
from app.etherith.core_types import (
    AccessLevel,
    ContentType,
    IdentityContext,
    IMMUTABLE_MEMORY_FIELDS,
    ListFilters,
    MemoryRecord,
    MUTABLE_MEMORY_FIELDS,
    generate_community_id,
)

logger = logging.getLogger(__name__)

Cursor = Tuple[datetime, str]


# ============================================================================
# Cursors
# ============================================================================

def encode_cursor(record: MemoryRecord) -> str:
    """Opaque cursor pointing just past ``record`` in newest-first order."""
    payload = json.dumps({"c": record.created_at.isoformat(), "i": record.id})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> Optional[Cursor]:
    if not cursor:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return datetime.fromisoformat(payload["c"]), str(payload["i"])
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidCursor() from e


def _is_timeout(error: OperationalError) -> bool:
    message = str(getattr(error, "orig", error)).lower()
    return "statement timeout" in message or "canceling statement" in message or "timed out" in message


class ArtifactRepository:
    """
    Repository over a SQLAlchemy session.

    One instance per unit of work; the session is owned by the caller.
    """

    def __init__(self, db: Session, timeout: Optional[float] = None):
        self.db = db
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str, timeout: Optional[float] = None):
        """Translate driver failures into archive upstream errors."""
        try:
            self._apply_timeout(timeout)
            yield
        except OperationalError as e:
            self.db.rollback()
            if _is_timeout(e):
                raise RepositoryTimeout(f"{operation}: {e.orig}") from e
            raise RepositoryUnavailable(f"{operation}: {e.orig}") from e

    def _apply_timeout(self, timeout: Optional[float]) -> None:
        timeout = timeout or self.timeout
        if not timeout:
            return
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))

    @staticmethod
    def _to_record(row: Memory) -> MemoryRecord:
        return MemoryRecord(
            id=row.id,
            owner_id=row.user_id,
            title=row.title,
            description=row.description,
            content_type=ContentType(row.content_type),
            content_hash=row.content_hash,
            locator=row.locator,
            metadata_hash=row.metadata_hash,
            file_size=row.file_size,
            mime_type=row.mime_type,
            cultural_context=list(row.cultural_context or []),
            cultural_significance_score=row.cultural_significance_score,
            tags=list(row.tags or []),
            access_level=AccessLevel(row.access_level),
            associated_communities=sorted(link.community_id for link in row.communities),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _missing_communities(self, community_ids: Iterable[str]) -> List[str]:
        wanted = set(community_ids)
        if not wanted:
            return []
        found = {
            cid for (cid,) in self.db.query(CulturalCommunity.id).filter(CulturalCommunity.id.in_(wanted))
        }
        return sorted(wanted - found)

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def create(self, record: MemoryRecord, timeout: Optional[float] = None) -> MemoryRecord:
        """
        Insert a new Memory and its community associations in one transaction.

        Raises:
            DuplicateIdentifier: id already present
            ConstraintViolation: owner or a referenced community does not exist
        """
        with self._guard("create memory", timeout):
            if self.db.get(Memory, record.id) is not None:
                raise DuplicateIdentifier(record.id)
            if self.db.get(User, record.owner_id) is None:
                raise ConstraintViolation("Owner does not exist", details={"owner_id": record.owner_id})
            missing = self._missing_communities(record.associated_communities)
            if missing:
                raise ConstraintViolation("Associated communities do not exist", details={"community_ids": missing})

            row = Memory(
                id=record.id,
                user_id=record.owner_id,
                title=record.title,
                description=record.description,
                content_type=record.content_type.value,
                content_hash=record.content_hash,
                locator=record.locator,
                metadata_hash=record.metadata_hash,
                file_size=record.file_size,
                mime_type=record.mime_type,
                cultural_context=list(record.cultural_context),
                cultural_significance_score=record.cultural_significance_score,
                tags=list(record.tags),
                is_public=record.access_level == AccessLevel.PUBLIC,
                access_level=record.access_level.value,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            row.communities = [
                MemoryCommunity(memory_id=record.id, community_id=cid)
                for cid in sorted(set(record.associated_communities))
            ]
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise ConstraintViolation("Memory violates a database constraint") from e
            self.db.refresh(row)
            return self._to_record(row)

    def get_by_id(self, memory_id: str, timeout: Optional[float] = None) -> Optional[MemoryRecord]:
        with self._guard("get memory", timeout):
            row = self.db.get(Memory, memory_id)
            return self._to_record(row) if row is not None else None

    def update(self, memory_id: str, fields: Dict[str, Any], timeout: Optional[float] = None) -> MemoryRecord:
        """
        Apply a partial update to mutable metadata fields.

        is_public is recomputed from access_level on every write.
        """
        blocked = IMMUTABLE_MEMORY_FIELDS & set(fields)
        if blocked:
            raise ImmutableFieldViolation(blocked)
        unknown = set(fields) - MUTABLE_MEMORY_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown or read-only fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        with self._guard("update memory", timeout):
            row = self.db.get(Memory, memory_id)
            if row is None:
                raise NotFoundError("Memory")

            for key in ("title", "description", "tags", "cultural_context", "cultural_significance_score"):
                if key in fields:
                    value = fields[key]
                    setattr(row, key, list(value) if isinstance(value, (list, tuple, set)) else value)

            if "access_level" in fields:
                row.access_level = AccessLevel(fields["access_level"]).value

            if "associated_communities" in fields:
                wanted = set(fields["associated_communities"] or [])
                missing = self._missing_communities(wanted)
                if missing:
                    self.db.rollback()
                    raise ConstraintViolation("Associated communities do not exist", details={"community_ids": missing})
                kept = [link for link in row.communities if link.community_id in wanted]
                present = {link.community_id for link in kept}
                row.communities = kept + [
                    MemoryCommunity(memory_id=row.id, community_id=cid)
                    for cid in sorted(wanted - present)
                ]

            if row.access_level == AccessLevel.COMMUNITY.value and not row.communities:
                self.db.rollback()
                raise ValidationError("Community access requires at least one associated community")

            row.is_public = row.access_level == AccessLevel.PUBLIC.value
            row.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(row)
            return self._to_record(row)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def _page(self, query: Query, after: Optional[Cursor], limit: int) -> List[Memory]:
        if after is not None:
            created_at, memory_id = after
            query = query.filter(
                or_(
                    Memory.created_at < created_at,
                    and_(Memory.created_at == created_at, Memory.id < memory_id),
                )
            )
        return query.order_by(Memory.created_at.desc(), Memory.id.desc()).limit(limit).all()

    def _iterate(
        self,
        query: Query,
        cursor: Optional[str],
        page_size: int,
        predicate: Optional[Callable[[MemoryRecord], bool]] = None,
    ) -> Iterator[MemoryRecord]:
        after = decode_cursor(cursor)
        while True:
            with self._guard("list memories"):
                rows = self._page(query, after, page_size)
            for row in rows:
                record = self._to_record(row)
                if predicate is None or predicate(record):
                    yield record
            if len(rows) < page_size:
                return
            after = (rows[-1].created_at, rows[-1].id)

    def iter_by_owner(self, owner_id: str, cursor: Optional[str] = None, page_size: int = 50) -> Iterator[MemoryRecord]:
        """Lazy newest-first sequence of one owner's memories."""
        query = self.db.query(Memory).filter(Memory.user_id == owner_id)
        return self._iterate(query, cursor, page_size)

    def iter_by_access_tier(
        self,
        access_level: AccessLevel,
        cursor: Optional[str] = None,
        page_size: int = 50,
    ) -> Iterator[MemoryRecord]:
        """Lazy newest-first sequence of memories in one access tier."""
        query = self.db.query(Memory).filter(Memory.access_level == AccessLevel(access_level).value)
        return self._iterate(query, cursor, page_size)

    def iter_visible_to(
        self,
        context: IdentityContext,
        filters: Optional[ListFilters] = None,
        cursor: Optional[str] = None,
        page_size: int = 50,
    ) -> Iterator[MemoryRecord]:
        """
        Lazy newest-first sequence of candidate memories for a requester.

        This narrows rows in SQL only; callers still run each record through
        the access evaluator.
        """
        filters = filters or ListFilters()

        visible = [Memory.access_level == AccessLevel.PUBLIC.value]
        if context.identity is not None:
            visible.append(Memory.user_id == context.identity)
        if context.community_memberships:
            shared = select(MemoryCommunity.memory_id).where(
                MemoryCommunity.community_id.in_(sorted(context.community_memberships))
            )
            visible.append(and_(Memory.access_level == AccessLevel.COMMUNITY.value, Memory.id.in_(shared)))

        query = self.db.query(Memory).filter(or_(*visible))
        if filters.access_level is not None:
            query = query.filter(Memory.access_level == filters.access_level.value)
        if filters.owner_id is not None:
            query = query.filter(Memory.user_id == filters.owner_id)
        if filters.content_type is not None:
            query = query.filter(Memory.content_type == filters.content_type.value)

        tag = normalize_tag(filters.tag)
        context_tag = normalize_tag(filters.cultural_context)

        def matches(record: MemoryRecord) -> bool:
            if tag and tag not in record.tags:
                return False
            if context_tag and context_tag not in record.cultural_context:
                return False
            return True

        return self._iterate(query, cursor, page_size, predicate=matches if (tag or context_tag) else None)

    def page(self, records: Iterator[MemoryRecord], limit: int) -> Tuple[List[MemoryRecord], Optional[str]]:
        """
        Take one page from a lazy listing.

        Returns up to ``limit`` records and the cursor that resumes after the
        last of them, or None when the listing is exhausted on this page.
        """
        items = list(itertools.islice(records, limit))
        next_cursor = encode_cursor(items[-1]) if len(items) == limit else None
        return items, next_cursor

    # ------------------------------------------------------------------
    # Users, communities, memberships
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        with self._guard("get user"):
            return self.db.get(User, user_id)

    def create_user(self, user_id: str, email: str, username: str, full_name: str, **profile: Any) -> User:
        with self._guard("create user"):
            if self.db.get(User, user_id) is not None:
                raise ConstraintViolation("User already exists", details={"user_id": user_id})
            user = User(id=user_id, email=email, username=username, full_name=full_name, **profile)
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise ConstraintViolation("Email or username already in use") from e
            self.db.refresh(user)
            logger.info("User registered", extra={"user_id": user_id})
            return user

    def get_community(self, community_id: str) -> Optional[CulturalCommunity]:
        with self._guard("get community"):
            return self.db.get(CulturalCommunity, community_id)

    def create_community(self, name: str, community_id: Optional[str] = None, **fields: Any) -> CulturalCommunity:
        with self._guard("create community"):
            community = CulturalCommunity(id=community_id or generate_community_id(), name=name, **fields)
            self.db.add(community)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise ConstraintViolation("Community violates a database constraint") from e
            self.db.refresh(community)
            return community

    def add_membership(self, community_id: str, user_id: str) -> bool:
        """
        Record that a user joined a community.

        Entry point for external membership events. Idempotent: returns False
        when the membership already existed, leaving member_count untouched.
        """
        with self._guard("add membership"):
            community = self.db.get(CulturalCommunity, community_id)
            if community is None or self.db.get(User, user_id) is None:
                raise ConstraintViolation(
                    "User or community does not exist",
                    details={"community_id": community_id, "user_id": user_id},
                )
            if self.db.get(CommunityMembership, (community_id, user_id)) is not None:
                return False
            self.db.add(CommunityMembership(community_id=community_id, user_id=user_id))
            community.member_count = (community.member_count or 0) + 1
            self.db.commit()
            return True

    def get_memberships(self, user_id: str) -> FrozenSet[str]:
        with self._guard("get memberships"):
            rows = self.db.query(CommunityMembership.community_id).filter(CommunityMembership.user_id == user_id)
            return frozenset(cid for (cid,) in rows)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_audit_event(
        self,
        event_type: str,
        user_id: Optional[str] = None,
        memory_id: Optional[str] = None,
        reason_code: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        with self._guard("record audit event"):
            event = AuditEvent(
                event_type=event_type,
                user_id=user_id,
                memory_id=memory_id,
                reason_code=reason_code,
                meta=meta,
            )
            self.db.add(event)
            self.db.commit()
            return event

    def list_audit_events(self, event_type: Optional[str] = None) -> List[AuditEvent]:
        with self._guard("list audit events"):
            query = self.db.query(AuditEvent)
            if event_type:
                query = query.filter(AuditEvent.event_type == event_type)
            return query.order_by(AuditEvent.timestamp.asc()).all()
