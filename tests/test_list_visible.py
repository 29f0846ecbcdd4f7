"""Test visibility-filtered listing and pagination."""
from datetime import datetime, timedelta

import pytest

from app.errors import InvalidCursor
from app.etherith.core_types import (
    AccessLevel,
    ContentType,
    IdentityContext,
    ListFilters,
    MemoryRecord,
)

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0)


def add_memory(repository, memory_id, minutes, access_level="private", owner_id="u1", communities=None, **fields):
    fields.setdefault("content_type", ContentType.DOCUMENT)
    record = MemoryRecord(
        id=memory_id,
        owner_id=owner_id,
        title=f"Memory {memory_id}",
        content_hash=f"hash-{memory_id}",
        locator=f"https://gateway.test/ipfs/hash-{memory_id}",
        access_level=access_level,
        associated_communities=communities or [],
        created_at=BASE_TIME + timedelta(minutes=minutes),
        updated_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )
    return repository.create(record)


@pytest.fixture
def mixed_archive(repository, community_setup):
    add_memory(repository, "m-private", 1)
    add_memory(repository, "m-public", 2, access_level="public", tags=["festival"])
    add_memory(repository, "m-c1", 3, access_level="community", communities=["c1"], cultural_context=["yoruba"])
    add_memory(repository, "m-c2", 4, access_level="community", communities=["c2"])
    add_memory(repository, "m-u2-private", 5, owner_id="u2", content_type=ContentType.IMAGE)


def ids(items):
    return [record.id for record in items]


def test_owner_sees_own_and_public(orchestrator, mixed_archive):
    """Test the owner sees everything they own, newest first."""
    items, next_cursor = orchestrator.list_visible_to(IdentityContext(identity="u1"))
    assert ids(items) == ["m-c2", "m-c1", "m-public", "m-private"]
    assert next_cursor is None


def test_anonymous_sees_only_public(orchestrator, mixed_archive):
    items, _ = orchestrator.list_visible_to(None)
    assert ids(items) == ["m-public"]


def test_member_sees_community_and_public(orchestrator, repository, mixed_archive):
    context = IdentityContext(identity="u2", community_memberships=repository.get_memberships("u2"))
    items, _ = orchestrator.list_visible_to(context)
    assert ids(items) == ["m-u2-private", "m-c1", "m-public"]


def test_every_listed_record_passes_retrieve(orchestrator, repository, mixed_archive):
    """Test listing never shows anything retrieve would deny."""
    for uid in (None, "u1", "u2", "u3"):
        context = IdentityContext(
            identity=uid,
            community_memberships=repository.get_memberships(uid) if uid else frozenset(),
        )
        items, _ = orchestrator.list_visible_to(context)
        for record in items:
            assert orchestrator.retrieve(context, record.id).id == record.id


def test_filters_narrow_results(orchestrator, mixed_archive):
    owner = IdentityContext(identity="u1")

    items, _ = orchestrator.list_visible_to(owner, ListFilters(access_level=AccessLevel.COMMUNITY))
    assert ids(items) == ["m-c2", "m-c1"]

    items, _ = orchestrator.list_visible_to(owner, ListFilters(tag="Festival"))
    assert ids(items) == ["m-public"]

    items, _ = orchestrator.list_visible_to(owner, ListFilters(cultural_context="yoruba"))
    assert ids(items) == ["m-c1"]

    items, _ = orchestrator.list_visible_to(None, ListFilters(content_type=ContentType.IMAGE))
    assert items == []


def test_owner_filter_does_not_widen_visibility(orchestrator, mixed_archive):
    items, _ = orchestrator.list_visible_to(IdentityContext(identity="u3"), ListFilters(owner_id="u2"))
    assert items == []


def test_pagination_walks_all_pages(orchestrator, mixed_archive):
    owner = IdentityContext(identity="u1")
    first, cursor = orchestrator.list_visible_to(owner, limit=3)
    assert ids(first) == ["m-c2", "m-c1", "m-public"]
    assert cursor is not None

    second, cursor = orchestrator.list_visible_to(owner, cursor=cursor, limit=3)
    assert ids(second) == ["m-private"]
    assert cursor is None


def test_cursor_stable_under_concurrent_inserts(orchestrator, repository, mixed_archive):
    """Test rows inserted after page one do not shift or duplicate page two."""
    owner = IdentityContext(identity="u1")
    first, cursor = orchestrator.list_visible_to(owner, limit=2)
    assert ids(first) == ["m-c2", "m-c1"]

    add_memory(repository, "m-newest", 60, access_level="public")

    second, _ = orchestrator.list_visible_to(owner, cursor=cursor, limit=2)
    assert ids(second) == ["m-public", "m-private"]


def test_equal_timestamps_ordered_by_id(orchestrator, repository, community_setup):
    for memory_id in ("m-a", "m-b", "m-c"):
        add_memory(repository, memory_id, 0, access_level="public")

    first, cursor = orchestrator.list_visible_to(None, limit=2)
    second, _ = orchestrator.list_visible_to(None, cursor=cursor, limit=2)
    assert ids(first) + ids(second) == ["m-c", "m-b", "m-a"]


def test_limit_is_clamped(orchestrator, mixed_archive):
    items, _ = orchestrator.list_visible_to(IdentityContext(identity="u1"), limit=10_000)
    assert len(items) == 4


def test_malformed_cursor_rejected(orchestrator, mixed_archive):
    with pytest.raises(InvalidCursor):
        orchestrator.list_visible_to(None, cursor="not-a-cursor")


def test_iterators_are_lazy_and_ordered(repository, mixed_archive):
    by_owner = repository.iter_by_owner("u1", page_size=2)
    assert next(by_owner).id == "m-c2"
    assert [record.id for record in by_owner] == ["m-c1", "m-public", "m-private"]

    community = list(repository.iter_by_access_tier(AccessLevel.COMMUNITY, page_size=1))
    assert ids(community) == ["m-c2", "m-c1"]


def test_repository_page_resumes_from_cursor(repository, mixed_archive):
    """Test page() hands back a cursor that resumes the same listing."""
    items, cursor = repository.page(repository.iter_by_owner("u1"), 3)
    assert ids(items) == ["m-c2", "m-c1", "m-public"]

    rest, cursor = repository.page(repository.iter_by_owner("u1", cursor=cursor), 3)
    assert ids(rest) == ["m-private"]
    assert cursor is None


def test_tag_filter_matches_ampersand_and_spacing(orchestrator, community_setup):
    """Test filter values are normalized the same way stored tags are."""
    orchestrator.submit(
        "u1",
        b"recipe card",
        {
            "content_type": "document",
            "access_level": "public",
            "tags": ["Food & Drink"],
            "cultural_context": ["Côte  d'Ivoire"],
        },
    )

    for value in ("food & drink", "  Food   &  Drink "):
        items, _ = orchestrator.list_visible_to(None, ListFilters(tag=value))
        assert [record.tags for record in items] == [["food & drink"]]

    items, _ = orchestrator.list_visible_to(None, ListFilters(cultural_context="côte d'ivoire"))
    assert len(items) == 1
