"""
Etherith Archival Orchestrator

Composes the content store, repository, identity context and access
evaluator into the public archive operations:

    submit            validate -> upload -> persist -> canonical record
    retrieve          fetch record -> evaluate -> record or AccessDenied
    retrieve_content  retrieve + gateway fetch of the artifact bytes
    update_metadata   owner-only edits of mutable fields
    list_visible_to   newest-first page of records the requester may read

Submission is not atomic across the content store and the repository. If
persisting fails after an upload succeeded, the uploaded object is left
unreferenced; it is logged, reported and audited as CONTENT_ORPHANED so an
operator can reconcile it. submit is never retried. Reads retry upstream
failures a bounded number of times.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.errors import (
    AccessDenied,
    ConstraintViolation,
    ContentUnavailable,
    EmptyPayload,
    ImmutableFieldViolation,
    InvalidOwnerOrCommunity,
    PayloadTooLarge,
    UnsupportedContentType,
    UpstreamFailure,
    ValidationError,
)
from app.monitoring import capture_message
from app.sanitization import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    normalize_tags,
    sanitize_mime_type,
    sanitize_optional_text,
    sanitize_string,
    sanitize_user_id,
)
from app.schemas import MetadataUpdate, SubmissionMetadata
from app.etherith.access_control import can_modify, evaluate_access
from app.etherith.content_store import ContentStoreClient
from app.etherith.core_types import (
    AccessLevel,
    AuditEventType,
    ContentType,
    DenyReason,
    IdentityContext,
    IMMUTABLE_MEMORY_FIELDS,
    ListFilters,
    MemoryRecord,
    StoredContent,
    generate_memory_id,
)
from app.etherith.repository import ArtifactRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TITLE = "Untitled"
_TYPED_MEDIA = {ContentType.IMAGE.value, ContentType.VIDEO.value, ContentType.AUDIO.value}


def _pydantic_details(error: PydanticValidationError) -> Dict[str, Any]:
    return {
        "fields": [
            {
                "field": ".".join(str(loc) for loc in e["loc"]),
                "message": e["msg"],
                "type": e["type"],
            }
            for e in error.errors()
        ]
    }


class ArchivalOrchestrator:
    """Archive operations over injected repository and content store."""

    def __init__(
        self,
        repository: ArtifactRepository,
        content_store: ContentStoreClient,
        max_payload_bytes: Optional[int] = None,
        read_retry_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        pin_metadata: Optional[bool] = None,
        default_page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
    ):
        self.repository = repository
        self.content_store = content_store
        self.max_payload_bytes = max_payload_bytes or settings.max_payload_bytes
        self.read_retry_attempts = min(read_retry_attempts or settings.read_retry_attempts, 3)
        self.retry_backoff_seconds = (
            settings.retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self.pin_metadata = settings.pin_metadata_documents if pin_metadata is None else pin_metadata
        self.default_page_size = default_page_size or settings.default_page_size
        self.max_page_size = max_page_size or settings.max_page_size

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        owner_id: str,
        data: bytes,
        metadata: Union[SubmissionMetadata, Dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> MemoryRecord:
        """
        Archive an artifact and return its canonical record.

        Store failures propagate unchanged and leave no record behind.
        """
        if not isinstance(metadata, SubmissionMetadata):
            try:
                metadata = SubmissionMetadata.model_validate(metadata)
            except PydanticValidationError as e:
                raise ValidationError("Invalid submission metadata", details=_pydantic_details(e)) from e

        content_type = self._validate_content_type(metadata.content_type)
        self._validate_payload(data)
        fields = self._normalize_submission(metadata, content_type)

        try:
            owner_id = sanitize_user_id(owner_id)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        stored = self.content_store.store(data, fields["mime_type"], timeout=timeout)

        record = MemoryRecord(
            id=generate_memory_id(),
            owner_id=owner_id,
            content_type=content_type,
            content_hash=stored.content_hash,
            locator=stored.locator,
            file_size=len(data),
            **fields,
        )

        if self.pin_metadata:
            try:
                record.metadata_hash = self.content_store.store_metadata(
                    self._metadata_document(record), timeout=timeout
                )
            except UpstreamFailure as e:
                self._record_orphan(stored, owner_id, reason=e.code, audit=True)
                raise

        try:
            created = self.repository.create(record, timeout=timeout)
        except ConstraintViolation as e:
            self._record_orphan(stored, owner_id, reason="CONSTRAINT_VIOLATION", audit=True)
            raise InvalidOwnerOrCommunity(e.message) from e
        except UpstreamFailure as e:
            # Repository unreachable, so the audit trail cannot be written either
            self._record_orphan(stored, owner_id, reason=e.code, audit=False)
            raise
        except Exception:
            self._record_orphan(stored, owner_id, reason="PERSIST_FAILED", audit=False)
            raise

        self._audit(
            AuditEventType.MEMORY_WRITE,
            user_id=owner_id,
            memory_id=created.id,
            meta={"content_hash": created.content_hash, "access_level": created.access_level.value},
        )
        logger.info(
            "Memory archived",
            extra={"user_id": owner_id, "memory_id": created.id, "content_hash": created.content_hash},
        )
        return created

    def _validate_content_type(self, raw: str) -> ContentType:
        try:
            return ContentType((raw or "").strip().lower())
        except ValueError:
            raise UnsupportedContentType(raw)

    def _validate_payload(self, data: bytes) -> None:
        if not data:
            raise EmptyPayload()
        if len(data) > self.max_payload_bytes:
            raise PayloadTooLarge(len(data), self.max_payload_bytes)

    def _normalize_submission(self, metadata: SubmissionMetadata, content_type: ContentType) -> Dict[str, Any]:
        try:
            title = sanitize_optional_text(metadata.title, MAX_TITLE_LENGTH) or DEFAULT_TITLE
            description = sanitize_optional_text(metadata.description, MAX_DESCRIPTION_LENGTH)
            mime_type = sanitize_mime_type(metadata.mime_type)
            tags = normalize_tags(metadata.tags, "tags")
            cultural_context = normalize_tags(metadata.cultural_context, "cultural_context")
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if mime_type:
            major = mime_type.split("/", 1)[0]
            if major in _TYPED_MEDIA and major != content_type.value:
                raise ValidationError(
                    f"mime_type {mime_type} does not match content_type {content_type.value}",
                    details={"mime_type": mime_type, "content_type": content_type.value},
                )

        access_level = metadata.access_level or AccessLevel.PRIVATE
        communities = sorted({c.strip() for c in metadata.associated_communities if c and c.strip()})
        if access_level == AccessLevel.COMMUNITY and not communities:
            raise ValidationError("Community access requires at least one associated community")

        return {
            "title": title,
            "description": description,
            "mime_type": mime_type,
            "tags": tags,
            "cultural_context": cultural_context,
            "cultural_significance_score": metadata.cultural_significance_score,
            "access_level": access_level,
            "associated_communities": communities,
        }

    @staticmethod
    def _metadata_document(record: MemoryRecord) -> bytes:
        """Provenance document pinned next to the artifact."""
        document = {
            "memory_id": record.id,
            "owner_id": record.owner_id,
            "title": record.title,
            "description": record.description,
            "content_type": record.content_type.value,
            "content_hash": record.content_hash,
            "mime_type": record.mime_type,
            "file_size": record.file_size,
            "cultural_context": record.cultural_context,
            "cultural_significance_score": record.cultural_significance_score,
            "tags": record.tags,
            "created_at": record.created_at.isoformat() + "Z",
        }
        return json.dumps(document, sort_keys=True).encode("utf-8")

    def _record_orphan(self, stored: StoredContent, owner_id: str, reason: str, audit: bool) -> None:
        context = {
            "content_hash": stored.content_hash,
            "locator": stored.locator,
            "owner_id": owner_id,
            "reason": reason,
        }
        logger.error("Uploaded content orphaned after failed persist", extra=context)
        capture_message("Orphaned content upload", level="warning", context=context)
        if audit:
            self._audit(
                AuditEventType.CONTENT_ORPHANED,
                user_id=owner_id,
                reason_code=reason,
                meta={"content_hash": stored.content_hash, "locator": stored.locator},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _with_read_retry(self, operation: Callable[[], T]) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.read_retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff_seconds, max=2),
            retry=retry_if_exception_type(UpstreamFailure),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(operation)

    @staticmethod
    def _log_retry(retry_state) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"Retrying read after upstream failure (attempt {retry_state.attempt_number})",
            extra={"upstream_detail": str(error)},
        )

    def _deny(self, context: IdentityContext, memory_id: str, reason: DenyReason) -> None:
        logger.info(
            "Read denied",
            extra={"user_id": context.identity or "anonymous", "memory_id": memory_id, "deny_reason": reason.value},
        )
        self._audit(
            AuditEventType.MEMORY_READ,
            user_id=context.identity,
            memory_id=memory_id,
            reason_code="ACCESS_DENIED",
            meta={"deny_reason": reason.value},
        )
        raise AccessDenied(reason.value)

    def retrieve(
        self,
        context: Optional[IdentityContext],
        memory_id: str,
        timeout: Optional[float] = None,
    ) -> MemoryRecord:
        """
        Return the record if ``context`` may read it.

        Unknown ids and denied reads raise the same AccessDenied.
        """
        context = context or IdentityContext.anonymous()
        record = self._with_read_retry(lambda: self.repository.get_by_id(memory_id, timeout=timeout))
        if record is None:
            self._deny(context, memory_id, DenyReason.NOT_FOUND)

        decision = evaluate_access(record, context)
        if not decision.allowed:
            self._deny(context, memory_id, decision.reason)

        self._audit(
            AuditEventType.MEMORY_READ,
            user_id=context.identity,
            memory_id=record.id,
            meta={"matched_rule": decision.matched_rule, "policy_version": decision.policy_version},
        )
        return record

    def retrieve_content(
        self,
        context: Optional[IdentityContext],
        memory_id: str,
        timeout: Optional[float] = None,
    ) -> Tuple[MemoryRecord, bytes]:
        """
        Return the record and its bytes.

        Content fetch fails independently with ContentUnavailable even after
        metadata access was granted.
        """
        record = self.retrieve(context, memory_id, timeout=timeout)
        try:
            data = self._with_read_retry(lambda: self.content_store.fetch(record.locator, timeout=timeout))
        except ContentUnavailable:
            raise
        except UpstreamFailure as e:
            raise ContentUnavailable(str(e)) from e
        return record, data

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_metadata(
        self,
        context: Optional[IdentityContext],
        memory_id: str,
        changes: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> MemoryRecord:
        """
        Apply owner edits to mutable metadata.

        Immutable fields are rejected before anything else, whoever asks.
        """
        context = context or IdentityContext.anonymous()
        blocked = IMMUTABLE_MEMORY_FIELDS & set(changes or {})
        if blocked:
            logger.critical(
                "Attempt to modify immutable memory fields",
                extra={"user_id": context.identity or "anonymous", "memory_id": memory_id, "fields": sorted(blocked)},
            )
            raise ImmutableFieldViolation(blocked)

        try:
            update = MetadataUpdate.model_validate(changes or {})
        except PydanticValidationError as e:
            raise ValidationError("Invalid metadata update", details=_pydantic_details(e)) from e
        fields = self._normalize_update(update)

        record = self._with_read_retry(lambda: self.repository.get_by_id(memory_id, timeout=timeout))
        if record is None:
            self._deny(context, memory_id, DenyReason.NOT_FOUND)
        if not can_modify(record, context):
            self._deny(context, memory_id, DenyReason.NOT_OWNER)

        if not fields:
            return record

        access_level = fields.get("access_level", record.access_level)
        communities = fields.get("associated_communities", record.associated_communities)
        if access_level == AccessLevel.COMMUNITY and not communities:
            raise ValidationError("Community access requires at least one associated community")

        try:
            updated = self.repository.update(memory_id, fields, timeout=timeout)
        except ConstraintViolation as e:
            raise InvalidOwnerOrCommunity(e.message) from e

        self._audit(
            AuditEventType.MEMORY_UPDATE,
            user_id=context.identity,
            memory_id=memory_id,
            meta={"fields": sorted(fields)},
        )
        logger.info(
            "Memory metadata updated",
            extra={"user_id": context.identity, "memory_id": memory_id, "fields": sorted(fields)},
        )
        return updated

    def _normalize_update(self, update: MetadataUpdate) -> Dict[str, Any]:
        fields = update.model_dump(exclude_unset=True)
        try:
            if "title" in fields:
                if fields["title"] is None:
                    raise ValueError("title cannot be null")
                fields["title"] = sanitize_string(fields["title"], MAX_TITLE_LENGTH) or DEFAULT_TITLE
            if "description" in fields:
                fields["description"] = sanitize_optional_text(fields["description"], MAX_DESCRIPTION_LENGTH)
            for key in ("tags", "cultural_context"):
                if key in fields:
                    fields[key] = normalize_tags(fields[key], key)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if "access_level" in fields and fields["access_level"] is None:
            raise ValidationError("access_level cannot be null")
        if "associated_communities" in fields:
            fields["associated_communities"] = sorted(
                {c.strip() for c in fields["associated_communities"] or [] if c and c.strip()}
            )
        return fields

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_visible_to(
        self,
        context: Optional[IdentityContext],
        filters: Optional[ListFilters] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[MemoryRecord], Optional[str]]:
        """
        One newest-first page of records the requester may read.

        Returns the page and a cursor for the next page (None at the end).
        """
        context = context or IdentityContext.anonymous()
        limit = max(1, min(limit or self.default_page_size, self.max_page_size))

        candidates = self.repository.iter_visible_to(context, filters, cursor=cursor, page_size=limit)
        return self.repository.page(
            (record for record in candidates if evaluate_access(record, context).allowed),
            limit,
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _audit(self, event_type: AuditEventType, **kwargs: Any) -> None:
        """Audit writes never fail the operation they describe."""
        try:
            self.repository.record_audit_event(event_type.value, **kwargs)
        except UpstreamFailure as e:
            logger.warning(
                f"Audit event {event_type.value} not recorded: {e}",
                extra={"memory_id": kwargs.get("memory_id")},
            )
