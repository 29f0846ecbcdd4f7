"""Test owner metadata updates and immutable fields."""
import pytest

from app.errors import AccessDenied, ImmutableFieldViolation, InvalidOwnerOrCommunity, ValidationError
from app.etherith.core_types import AccessLevel, AuditEventType, IdentityContext

OWNER = IdentityContext(identity="u1")
MEMBER = IdentityContext(identity="u2", community_memberships=frozenset({"c1"}))


@pytest.fixture
def memory(orchestrator, community_setup):
    return orchestrator.submit(
        "u1",
        b"recorded oral history",
        {"content_type": "audio", "title": "Oral history", "tags": ["elders"]},
    )


@pytest.mark.parametrize("field", ["content_hash", "id", "owner_id", "user_id"])
def test_immutable_fields_rejected_for_owner(orchestrator, repository, memory, field):
    """Test write-once fields cannot be changed even by the owner."""
    with pytest.raises(ImmutableFieldViolation) as exc_info:
        orchestrator.update_metadata(OWNER, memory.id, {field: "tampered"})

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["fields"] == [field]
    assert repository.get_by_id(memory.id) == memory


def test_immutable_fields_rejected_before_authorization(orchestrator, memory):
    """Test non-owners and anonymous callers get the integrity error too."""
    with pytest.raises(ImmutableFieldViolation):
        orchestrator.update_metadata(MEMBER, memory.id, {"content_hash": "QmOther", "title": "x"})
    with pytest.raises(ImmutableFieldViolation):
        orchestrator.update_metadata(None, memory.id, {"content_hash": "QmOther"})


def test_owner_updates_title_and_tags(orchestrator, repository, memory):
    updated = orchestrator.update_metadata(OWNER, memory.id, {"title": "Oral history, part 1", "tags": ["Elders", "Songs"]})

    assert updated.title == "Oral history, part 1"
    assert updated.tags == ["elders", "songs"]
    assert updated.content_hash == memory.content_hash
    assert updated.created_at == memory.created_at
    assert updated.updated_at >= memory.updated_at
    assert repository.get_by_id(memory.id) == updated


def test_non_owner_denied(orchestrator, memory):
    with pytest.raises(AccessDenied) as exc_info:
        orchestrator.update_metadata(MEMBER, memory.id, {"title": "Mine now"})
    assert exc_info.value.reason == "not_owner"


def test_update_nonexistent_denied(orchestrator, community_setup):
    with pytest.raises(AccessDenied):
        orchestrator.update_metadata(OWNER, "no-such-memory", {"title": "x"})


def test_switch_to_public_recomputes_is_public(orchestrator, memory):
    """Test is_public follows access_level on update."""
    updated = orchestrator.update_metadata(OWNER, memory.id, {"access_level": "public"})
    assert updated.access_level == AccessLevel.PUBLIC
    assert updated.is_public is True

    updated = orchestrator.update_metadata(OWNER, memory.id, {"access_level": "private"})
    assert updated.is_public is False


def test_switch_to_community_requires_communities(orchestrator, memory):
    with pytest.raises(ValidationError):
        orchestrator.update_metadata(OWNER, memory.id, {"access_level": "community"})


def test_switch_to_community_grants_members(orchestrator, memory):
    orchestrator.update_metadata(
        OWNER, memory.id, {"access_level": "community", "associated_communities": ["c1"]}
    )
    assert orchestrator.retrieve(MEMBER, memory.id).id == memory.id


def test_removing_last_community_rejected(orchestrator, memory):
    orchestrator.update_metadata(OWNER, memory.id, {"access_level": "community", "associated_communities": ["c1"]})
    with pytest.raises(ValidationError):
        orchestrator.update_metadata(OWNER, memory.id, {"associated_communities": []})


def test_unknown_community_rejected(orchestrator, memory):
    with pytest.raises(InvalidOwnerOrCommunity):
        orchestrator.update_metadata(OWNER, memory.id, {"associated_communities": ["nowhere"]})


def test_null_title_rejected(orchestrator, memory):
    with pytest.raises(ValidationError):
        orchestrator.update_metadata(OWNER, memory.id, {"title": None})


def test_unknown_field_rejected(orchestrator, memory):
    with pytest.raises(ValidationError):
        orchestrator.update_metadata(OWNER, memory.id, {"locator": "https://elsewhere"})


def test_empty_update_is_noop(orchestrator, repository, memory):
    assert orchestrator.update_metadata(OWNER, memory.id, {}) == memory
    assert repository.list_audit_events(AuditEventType.MEMORY_UPDATE.value) == []


def test_update_is_audited(orchestrator, repository, memory):
    orchestrator.update_metadata(OWNER, memory.id, {"description": "Recorded in Ibadan"})
    events = repository.list_audit_events(AuditEventType.MEMORY_UPDATE.value)
    assert len(events) == 1
    assert events[0].meta["fields"] == ["description"]


def test_sending_back_tags_leaves_them_unchanged(orchestrator, repository, community_setup):
    """Test tags read from a record can be written back without changing."""
    record = orchestrator.submit(
        "u1",
        b"market song",
        {"content_type": "audio", "tags": ["Food & Drink", "<market>"], "cultural_context": ["Ga & Adangbe"]},
    )
    assert record.tags == ["<market>", "food & drink"]

    updated = orchestrator.update_metadata(
        OWNER, record.id, {"tags": record.tags, "cultural_context": record.cultural_context}
    )
    updated = orchestrator.update_metadata(OWNER, updated.id, {"tags": updated.tags})

    assert updated.tags == ["<market>", "food & drink"]
    assert updated.cultural_context == ["ga & adangbe"]
    assert repository.get_by_id(record.id).tags == record.tags


def test_owner_sets_any_significance_score(orchestrator, memory):
    updated = orchestrator.update_metadata(OWNER, memory.id, {"cultural_significance_score": -0.75})
    assert updated.cultural_significance_score == -0.75
