"""In-memory object store for tests and local development. Data is lost on exit."""

import hashlib
import io
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .base import (
    ChecksumMismatch,
    InvalidPart,
    MultipartUpload,
    ObjectInfo,
    ObjectStore,
    PendingUpload,
    StoredObject,
    UploadedPart,
    UploadSessionUnknown,
)

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    data: bytes
    checksum: str | None
    content_type: str | None
    last_modified: datetime


@dataclass
class _Pending:
    key: str
    initiated: datetime
    parts: dict = field(default_factory=dict)  # part number -> bytes


def _now():
    return datetime.now(timezone.utc)


class Storage(ObjectStore):
    """Dictionary-backed store. A single lock guards every mutation."""

    def __init__(self, config=None):
        self._objects: dict[str, _Entry] = {}
        self._uploads: dict[str, _Pending] = {}
        self._lock = threading.Lock()

    def _info(self, key, entry):
        return ObjectInfo(
            key=key,
            size=len(entry.data),
            checksum=entry.checksum,
            content_type=entry.content_type,
            last_modified=entry.last_modified,
        )

    def _store(self, key, data, checksum=None, content_type=None):
        actual = hashlib.sha256(data).hexdigest()
        if checksum is not None and checksum != actual:
            raise ChecksumMismatch(checksum, actual)
        entry = _Entry(data, actual, content_type, _now())
        with self._lock:
            self._objects[key] = entry
        return self._info(key, entry)

    def head(self, key):
        with self._lock:
            entry = self._objects.get(key)
        return self._info(key, entry) if entry is not None else None

    def get(self, key):
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            return None
        return StoredObject(info=self._info(key, entry), body=io.BytesIO(entry.data))

    def put(self, key, stream, checksum=None, content_type=None):
        return self._store(key, stream.read(), checksum, content_type)

    def delete(self, key):
        with self._lock:
            self._objects.pop(key, None)

    def list(self, prefix):
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def create_multipart(self, key):
        upload_id = uuid.uuid4().hex
        with self._lock:
            self._uploads[upload_id] = _Pending(key=key, initiated=_now())
        logger.debug(f"Created multipart upload {upload_id} for {key}")
        return upload_id

    def resume_multipart(self, key, upload_id):
        with self._lock:
            pending = self._uploads.get(upload_id)
        if pending is None or pending.key != key:
            raise UploadSessionUnknown(f"no upload {upload_id} for {key}")
        return _MemoryMultipartUpload(self, key, upload_id)

    def list_multipart_uploads(self, prefix=""):
        with self._lock:
            return [
                PendingUpload(key=p.key, upload_id=upload_id, initiated=p.initiated)
                for upload_id, p in self._uploads.items()
                if p.key.startswith(prefix)
            ]

    def _pending(self, upload_id):
        pending = self._uploads.get(upload_id)
        if pending is None:
            raise UploadSessionUnknown(f"upload {upload_id} no longer exists")
        return pending


class _MemoryMultipartUpload(MultipartUpload):
    def __init__(self, store, key, upload_id):
        super().__init__(key, upload_id)
        self._store = store

    def append_part(self, part_number, stream):
        data = stream.read()
        with self._store._lock:
            self._store._pending(self.upload_id).parts[part_number] = data
        return UploadedPart(
            part_number=part_number, etag=hashlib.md5(data).hexdigest(), size=len(data)
        )

    def complete(self, parts):
        with self._store._lock:
            pending = self._store._pending(self.upload_id)
            chunks = []
            for part in parts:
                data = pending.parts.get(part.part_number)
                if data is None or hashlib.md5(data).hexdigest() != part.etag:
                    raise InvalidPart(f"part {part.part_number} does not match upload")
                chunks.append(data)
            del self._store._uploads[self.upload_id]
        return self._store._store(self.key, b"".join(chunks))

    def abort(self):
        with self._store._lock:
            self._store._uploads.pop(self.upload_id, None)
