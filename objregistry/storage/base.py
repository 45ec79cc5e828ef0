"""
Object store contract shared by every storage driver.

A driver is a flat key/value blob store with object metadata and a
multipart-upload sub-protocol. Keys are slash-separated strings such as
``library/ubuntu/blobs/sha256:...``; drivers must not interpret them beyond
prefix matching.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO


class StorageError(Exception):
    """Base class for all object store failures."""


class BackendUnavailable(StorageError):
    """The backend could not be reached or failed unexpectedly."""


class UploadSessionUnknown(StorageError):
    """No multipart upload with this id exists for this key."""


class InvalidPart(StorageError):
    """A part passed to ``complete`` does not match what was uploaded."""


class ChecksumMismatch(StorageError):
    """The bytes written do not hash to the checksum the caller supplied."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"checksum mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    checksum: str | None = None  # sha256 hex, when known
    content_type: str | None = None
    last_modified: datetime | None = None


@dataclass
class StoredObject:
    """An object opened for reading. The caller must close ``body``."""

    info: ObjectInfo
    body: BinaryIO

    def read(self) -> bytes:
        try:
            return self.body.read()
        finally:
            self.body.close()


@dataclass(frozen=True)
class UploadedPart:
    part_number: int
    etag: str
    size: int


@dataclass(frozen=True)
class PendingUpload:
    key: str
    upload_id: str
    initiated: datetime


class MultipartUpload(abc.ABC):
    """Handle on an in-progress multipart upload."""

    def __init__(self, key: str, upload_id: str):
        self.key = key
        self.upload_id = upload_id

    @abc.abstractmethod
    def append_part(self, part_number: int, stream: BinaryIO) -> UploadedPart:
        """Upload one numbered part (1-based) from a byte stream."""

    @abc.abstractmethod
    def complete(self, parts: list[UploadedPart]) -> ObjectInfo:
        """Assemble the listed parts, in order, into the object at ``key``."""

    @abc.abstractmethod
    def abort(self) -> None:
        """Discard the upload and every part uploaded so far."""


class ObjectStore(abc.ABC):
    """
    Backend-agnostic object store.

    Writes are atomic from a reader's point of view: ``get`` sees either the
    complete previous object or the complete new one. Absent keys are
    reported as ``None`` rather than raised. Nothing here retries; retry
    policy belongs to callers.
    """

    # IO buffer used when copying streams
    buffer_size = 64 * 1024

    # Smallest size the backend accepts for a multipart part other than the last
    min_part_size = 0

    @abc.abstractmethod
    def head(self, key: str) -> ObjectInfo | None:
        """Return object metadata, or None if the key does not exist."""

    @abc.abstractmethod
    def get(self, key: str) -> StoredObject | None:
        """Open an object for streaming, or return None if it does not exist."""

    @abc.abstractmethod
    def put(
        self,
        key: str,
        stream: BinaryIO,
        checksum: str | None = None,
        content_type: str | None = None,
    ) -> ObjectInfo:
        """
        Write an object from a byte stream.

        Args:
            key: Destination key.
            stream: Readable byte stream, consumed to EOF.
            checksum: Expected sha256 hex of the content. Recorded as
                metadata and verified against the bytes actually written.
            content_type: Recorded as metadata.

        Raises:
            ChecksumMismatch: The content does not match ``checksum``. Any
                object previously stored at ``key`` is left untouched.
        """

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Deleting an absent key is not an error."""

    @abc.abstractmethod
    def list(self, prefix: str) -> list[str]:
        """Return all keys starting with ``prefix``, sorted."""

    @abc.abstractmethod
    def create_multipart(self, key: str) -> str:
        """Start a multipart upload targeting ``key`` and return its id."""

    @abc.abstractmethod
    def resume_multipart(self, key: str, upload_id: str) -> MultipartUpload:
        """
        Reattach to an existing multipart upload.

        Raises:
            UploadSessionUnknown: No such upload exists for ``key``.
        """

    @abc.abstractmethod
    def list_multipart_uploads(self, prefix: str = "") -> list[PendingUpload]:
        """Return multipart uploads that were neither completed nor aborted."""
