"""
Etherith Content Store Client

Uploads raw bytes to a content-addressed store and returns the content hash
plus a resolvable gateway locator. The client knows nothing about access
policy and never retries; retry decisions belong to the orchestrator.
"""
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import requests

from app.config import settings
from app.errors import (
    ContentStoreTimeout,
    ContentUnavailable,
    InvalidContent,
    QuotaExceeded,
    UploadFailure,
)
from app.etherith.core_types import StoredContent

logger = logging.getLogger(__name__)

# HTTP statuses the pinning service uses for account/plan rejections
QUOTA_STATUS_CODES = {402, 413, 429, 507}


class ContentStoreClient(ABC):
    """
    Interface for content-addressed stores.

    Implementations must not surface a hash unless the upload fully succeeded.
    """

    @abstractmethod
    def store(self, data: bytes, mime_type: Optional[str] = None, timeout: Optional[float] = None) -> StoredContent:
        ...

    @abstractmethod
    def store_metadata(self, document: bytes, timeout: Optional[float] = None) -> str:
        ...

    @abstractmethod
    def fetch(self, locator: str, timeout: Optional[float] = None) -> bytes:
        ...

    @abstractmethod
    def locator_for(self, content_hash: str) -> str:
        ...


class PinataContentStore(ContentStoreClient):
    """Content store backed by the Pinata IPFS pinning API."""

    def __init__(
        self,
        jwt: str,
        api_url: str = "https://api.pinata.cloud",
        gateway_url: str = "https://gateway.pinata.cloud",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Authorization": f"Bearer {jwt}"}

    def locator_for(self, content_hash: str) -> str:
        return f"{self.gateway_url}/ipfs/{content_hash}"

    def store(self, data: bytes, mime_type: Optional[str] = None, timeout: Optional[float] = None) -> StoredContent:
        content_hash = self._pin_file(data, mime_type or "application/octet-stream", "artifact", timeout)
        return StoredContent(content_hash=content_hash, locator=self.locator_for(content_hash))

    def store_metadata(self, document: bytes, timeout: Optional[float] = None) -> str:
        return self._pin_file(document, "application/json", "metadata.json", timeout)

    def fetch(self, locator: str, timeout: Optional[float] = None) -> bytes:
        try:
            response = self.session.get(locator, timeout=timeout or self.timeout)
        except requests.Timeout as e:
            raise ContentStoreTimeout(f"gateway fetch timed out: {e}") from e
        except requests.RequestException as e:
            raise ContentUnavailable(f"gateway fetch failed: {e}") from e

        if response.status_code >= 400:
            raise ContentUnavailable(f"gateway returned {response.status_code} for {locator}")
        return response.content

    def _pin_file(self, data: bytes, mime_type: str, name: str, timeout: Optional[float]) -> str:
        if not data:
            raise InvalidContent()

        url = f"{self.api_url}/pinning/pinFileToIPFS"
        try:
            response = self.session.post(
                url,
                headers=self.headers,
                files={"file": (name, data, mime_type)},
                timeout=timeout or self.timeout,
            )
        except requests.Timeout as e:
            raise ContentStoreTimeout(f"pin request timed out: {e}") from e
        except requests.RequestException as e:
            raise UploadFailure(f"pin request failed: {e}") from e

        if response.status_code in QUOTA_STATUS_CODES:
            raise QuotaExceeded(f"pinning service rejected upload with {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise UploadFailure(f"pinning service returned {response.status_code}: {response.text[:200]}")

        try:
            content_hash = response.json()["IpfsHash"]
        except (ValueError, KeyError, TypeError) as e:
            raise UploadFailure(f"pinning service returned an unreadable body: {e}") from e

        if not content_hash:
            raise UploadFailure("pinning service returned an empty hash")

        logger.info(
            f"Pinned {len(data)} bytes",
            extra={"content_hash": content_hash, "mime_type": mime_type},
        )
        return content_hash


class InMemoryContentStore(ContentStoreClient):
    """
    Process-local content store addressed by sha256.

    Used for local development when no pinning service is configured.
    """

    def __init__(self, gateway_url: str = "memory://etherith"):
        self.gateway_url = gateway_url.rstrip("/")
        self._objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def locator_for(self, content_hash: str) -> str:
        return f"{self.gateway_url}/ipfs/{content_hash}"

    def _put(self, data: bytes) -> str:
        if not data:
            raise InvalidContent()
        content_hash = hashlib.sha256(data).hexdigest()
        with self._lock:
            self._objects[content_hash] = bytes(data)
        return content_hash

    def store(self, data: bytes, mime_type: Optional[str] = None, timeout: Optional[float] = None) -> StoredContent:
        content_hash = self._put(data)
        return StoredContent(content_hash=content_hash, locator=self.locator_for(content_hash))

    def store_metadata(self, document: bytes, timeout: Optional[float] = None) -> str:
        return self._put(document)

    def fetch(self, locator: str, timeout: Optional[float] = None) -> bytes:
        content_hash = locator.rsplit("/", 1)[-1]
        with self._lock:
            data = self._objects.get(content_hash)
        if data is None:
            raise ContentUnavailable(f"no object for {content_hash}")
        return data

    def __contains__(self, content_hash: str) -> bool:
        return content_hash in self._objects

    def __len__(self) -> int:
        return len(self._objects)


def build_content_store() -> ContentStoreClient:
    """Construct the content store described by settings."""
    if settings.pinata_jwt:
        return PinataContentStore(
            jwt=settings.pinata_jwt,
            api_url=settings.pinata_api_url,
            gateway_url=settings.ipfs_gateway_url,
            timeout=settings.content_store_timeout_seconds,
        )
    if settings.environment == "production":
        raise ValueError("PINATA_JWT must be set in production")
    logger.warning("PINATA_JWT not set; using in-memory content store")
    return InMemoryContentStore()
