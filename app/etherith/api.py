"""
Etherith Archive HTTP endpoints.

Thin FastAPI surface over the ArchivalOrchestrator. All access decisions
are made in the core; handlers only translate HTTP to core calls.
"""
from functools import lru_cache
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Body, Depends, File, Form, Header, Query, Response, UploadFile, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.errors import AuthenticationError, NotFoundError, ValidationError
from app.firebase_auth import uid_from_authorization
from app.sanitization import normalize_tags, sanitize_email, sanitize_optional_text, sanitize_username
from app.schemas import (
    CommunityResponse,
    MemoryListResponse,
    MemoryResponse,
    SubmissionMetadata,
    UserCreateRequest,
    UserResponse,
)
from app.etherith.content_store import ContentStoreClient, build_content_store
from app.etherith.core_types import AccessLevel, ContentType, IdentityContext, ListFilters
from app.etherith.identity import build_identity_context
from app.etherith.orchestrator import ArchivalOrchestrator
from app.etherith.repository import ArtifactRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["archive"])


# ============================================================================
# Dependencies
# ============================================================================

@lru_cache(maxsize=1)
def get_content_store() -> ContentStoreClient:
    """Content store built once from settings and injected per request."""
    return build_content_store()


def get_authenticated_uid(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Verified uid of the caller, or None for anonymous requests."""
    try:
        return uid_from_authorization(authorization)
    except ValueError as e:
        raise AuthenticationError(str(e)) from e


def get_repository(db: Session = Depends(get_db)) -> ArtifactRepository:
    return ArtifactRepository(db, timeout=settings.repository_timeout_seconds)


def get_identity_context(
    uid: Optional[str] = Depends(get_authenticated_uid),
    repository: ArtifactRepository = Depends(get_repository),
) -> IdentityContext:
    return build_identity_context(repository, uid)


def get_orchestrator(
    repository: ArtifactRepository = Depends(get_repository),
    content_store: ContentStoreClient = Depends(get_content_store),
) -> ArchivalOrchestrator:
    return ArchivalOrchestrator(repository, content_store)


def _require_identity(context: IdentityContext) -> str:
    if context.is_anonymous:
        raise AuthenticationError()
    return context.identity


# ============================================================================
# Memory Endpoints
# ============================================================================

@router.post(
    "/memories",
    response_model=MemoryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Validation error"},
        401: {"description": "Authentication required"},
        413: {"description": "Payload too large"},
        503: {"description": "Content store unavailable"},
    },
    summary="Archive a new artifact",
)
def submit_memory(
    file: UploadFile = File(..., description="Artifact bytes"),
    metadata: str = Form(..., description="SubmissionMetadata as a JSON string"),
    context: IdentityContext = Depends(get_identity_context),
    orchestrator: ArchivalOrchestrator = Depends(get_orchestrator),
):
    """
    Upload an artifact and archive it with its metadata.

    The access tier defaults to private when not given.
    """
    owner_id = _require_identity(context)

    try:
        parsed = SubmissionMetadata.model_validate_json(metadata)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid submission metadata",
            details={"fields": [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()]},
        ) from e

    updates = {}
    if parsed.mime_type is None and file.content_type:
        updates["mime_type"] = file.content_type
    if parsed.title is None and file.filename:
        updates["title"] = file.filename[:255]
    if updates:
        parsed = parsed.model_copy(update=updates)

    # Read one byte past the limit so oversize uploads are detected without buffering them whole
    data = file.file.read(orchestrator.max_payload_bytes + 1)

    record = orchestrator.submit(owner_id, data, parsed)
    return MemoryResponse.from_record(record)


@router.get(
    "/memories",
    response_model=MemoryListResponse,
    summary="List artifacts visible to the caller",
)
def list_memories(
    access_level: Optional[AccessLevel] = Query(None),
    owner_id: Optional[str] = Query(None),
    content_type: Optional[ContentType] = Query(None),
    tag: Optional[str] = Query(None),
    cultural_context: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=settings.max_page_size),
    context: IdentityContext = Depends(get_identity_context),
    orchestrator: ArchivalOrchestrator = Depends(get_orchestrator),
):
    filters = ListFilters(
        access_level=access_level,
        owner_id=owner_id,
        content_type=content_type,
        tag=tag,
        cultural_context=cultural_context,
    )
    items, next_cursor = orchestrator.list_visible_to(context, filters, cursor=cursor, limit=limit)
    return MemoryListResponse(
        items=[MemoryResponse.from_record(record) for record in items],
        next_cursor=next_cursor,
    )


@router.get(
    "/memories/{memory_id}",
    response_model=MemoryResponse,
    responses={403: {"description": "Access denied"}},
    summary="Get artifact metadata",
)
def get_memory(
    memory_id: str,
    context: IdentityContext = Depends(get_identity_context),
    orchestrator: ArchivalOrchestrator = Depends(get_orchestrator),
):
    return MemoryResponse.from_record(orchestrator.retrieve(context, memory_id))


@router.get(
    "/memories/{memory_id}/content",
    responses={
        200: {"content": {"application/octet-stream": {}}},
        403: {"description": "Access denied"},
        503: {"description": "Content unavailable"},
    },
    summary="Download artifact bytes",
)
def get_memory_content(
    memory_id: str,
    context: IdentityContext = Depends(get_identity_context),
    orchestrator: ArchivalOrchestrator = Depends(get_orchestrator),
):
    record, data = orchestrator.retrieve_content(context, memory_id)
    return Response(
        content=data,
        media_type=record.mime_type or "application/octet-stream",
        headers={"ETag": f'"{record.content_hash}"', "X-Content-Hash": record.content_hash},
    )


@router.patch(
    "/memories/{memory_id}",
    response_model=MemoryResponse,
    responses={
        403: {"description": "Access denied"},
        409: {"description": "Immutable field modification attempted"},
    },
    summary="Update artifact metadata (owner only)",
)
def update_memory(
    memory_id: str,
    changes: Dict[str, Any] = Body(...),
    context: IdentityContext = Depends(get_identity_context),
    orchestrator: ArchivalOrchestrator = Depends(get_orchestrator),
):
    return MemoryResponse.from_record(orchestrator.update_metadata(context, memory_id, changes))


# ============================================================================
# Profiles and communities
# ============================================================================

@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "User, email or username already exists"}},
    summary="Register the caller's profile",
)
def register_user(
    request: UserCreateRequest,
    uid: Optional[str] = Depends(get_authenticated_uid),
    repository: ArtifactRepository = Depends(get_repository),
):
    if uid is None:
        raise AuthenticationError()
    try:
        user = repository.create_user(
            uid,
            email=sanitize_email(request.email),
            username=sanitize_username(request.username),
            full_name=sanitize_optional_text(request.full_name, 255) or request.username,
            avatar_url=request.avatar_url,
            bio=sanitize_optional_text(request.bio, 2000),
            cultural_background=normalize_tags(request.cultural_background, "cultural_background"),
            location=request.location.model_dump(mode="json") if request.location else None,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return UserResponse.model_validate(user)


@router.get("/users/me", response_model=UserResponse, summary="Get the caller's profile")
def get_current_user(
    uid: Optional[str] = Depends(get_authenticated_uid),
    repository: ArtifactRepository = Depends(get_repository),
):
    if uid is None:
        raise AuthenticationError()
    user = repository.get_user(uid)
    if user is None:
        raise NotFoundError("User")
    response = UserResponse.model_validate(user)
    return response.model_copy(update={"community_memberships": sorted(repository.get_memberships(uid))})


@router.get("/communities/{community_id}", response_model=CommunityResponse, summary="Get a community")
def get_community(
    community_id: str,
    repository: ArtifactRepository = Depends(get_repository),
):
    community = repository.get_community(community_id)
    if community is None:
        raise NotFoundError("Community")
    return CommunityResponse.model_validate(community)
