"""
Diagram Storage
===============
Persists encoded diagram images and returns a retrievable locator.

Two backends:
    - LocalFileStorage: writes under a public directory, served as /<key>
    - BlobStorage: uploads to a remote blob API with a read/write token

``storage_from_env`` picks the blob backend when a token is configured and
falls back to the local filesystem otherwise.

Key Layout:
    resource-bank/
    └── {grade}/
        └── parsed/
            └── {resource_id}/
                └── p{page}_img{index}.png
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import requests

from .exceptions import StorageError

logger = logging.getLogger(__name__)

BLOB_TOKEN_ENV = "BLOB_READ_WRITE_TOKEN"
BLOB_API_URL_ENV = "BLOB_API_URL"
DEFAULT_BLOB_API_URL = "https://blob.vercel-storage.com"
DEFAULT_KEY_PREFIX = "resource-bank"


@dataclass(frozen=True)
class StoredObject:
    """Where a stored object can be fetched from."""
    url: str
    path: str


class Storage(Protocol):
    """Interface of the storage collaborator."""

    def store(self, key: str, data: bytes, content_type: str) -> StoredObject:
        ...


# ─── Keys ─────────────────────────────────────────────────────────────────────


def diagram_key(
    grade: str,
    resource_id: str,
    page_number: int,
    index: int,
    prefix: str = DEFAULT_KEY_PREFIX,
) -> str:
    """
    Deterministic storage key for the ``index``-th diagram of a page.
    Always uses forward slashes.
    """
    return "/".join([
        prefix,
        _sanitize_segment(str(grade)),
        "parsed",
        _sanitize_segment(str(resource_id)),
        f"p{page_number}_img{index}.png",
    ])


# ─── Backends ─────────────────────────────────────────────────────────────────


class LocalFileStorage:
    """
    Writes objects below ``public_dir``.
    The returned URL is the key rooted at ``/``, the path is the key itself.
    """

    def __init__(self, public_dir: str = "public"):
        self.public_dir = Path(public_dir)

    def store(self, key: str, data: bytes, content_type: str) -> StoredObject:
        dest = self.public_dir / key
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as e:
            raise StorageError(key, f"Failed to write {dest}: {e}", cause=e) from e

        logger.debug(f"Stored {len(data)} bytes at {dest}")
        return StoredObject(url=f"/{key}", path=key)


class BlobStorage:
    """
    Uploads objects to a remote blob API.

    Objects are PUT to ``{api_url}/{key}`` without a random suffix so that
    re-parsing the same resource overwrites the same objects.
    """

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_BLOB_API_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def store(self, key: str, data: bytes, content_type: str) -> StoredObject:
        url = f"{self.api_url}/{key}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
        }

        try:
            response = self.session.put(
                url, data=data, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise StorageError(key, f"Blob upload failed for {key}: {e}", cause=e) from e

        public_url = payload.get("url")
        if not public_url:
            raise StorageError(key, f"Blob upload for {key} returned no url")

        logger.debug(f"Uploaded {len(data)} bytes to {public_url}")
        return StoredObject(url=public_url, path=payload.get("pathname") or key)


def storage_from_env(
    public_dir: str = "public",
    token: Optional[str] = None,
    api_url: Optional[str] = None,
) -> Storage:
    """
    Choose a backend: blob storage when a token is given or found in
    ``BLOB_READ_WRITE_TOKEN``, local files otherwise.
    """
    token = token or os.environ.get(BLOB_TOKEN_ENV)
    if token:
        api_url = api_url or os.environ.get(BLOB_API_URL_ENV) or DEFAULT_BLOB_API_URL
        logger.info(f"Using blob storage at {api_url}")
        return BlobStorage(token=token, api_url=api_url)

    logger.info(f"No blob token configured, storing diagrams under {public_dir}/")
    return LocalFileStorage(public_dir=public_dir)


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _sanitize_segment(name: str) -> str:
    """Make a key segment safe for use as a single path component."""
    cleaned = "".join(
        c if c.isalnum() or c in "-_." else "_"
        for c in name.strip()
    )
    if cleaned in ("", ".", ".."):
        return "_"
    return cleaned[:100]
