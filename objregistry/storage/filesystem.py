"""
Local filesystem object store.

Layout under the root directory:

    data/<key>                 one JSON metadata line, then the object content
    uploads/<upload_id>/       info.json plus one file per part (00001, 00002, ...)
    tmp/                       staging area for atomic writes

Metadata ({"checksum": ..., "content_type": ...}) lives in the same file as
the content, and objects are staged in ``tmp/`` and moved into place with a
single ``os.replace``. A reader that opened the previous file keeps reading
it, so metadata and bytes always belong to the same write.
"""

import hashlib
import json
import logging
import os
import shutil
import tempfile
import uuid
from datetime import datetime, timezone

from ..digest import DigestingReader
from .base import (
    ChecksumMismatch,
    InvalidPart,
    MultipartUpload,
    ObjectInfo,
    ObjectStore,
    PendingUpload,
    StorageError,
    StoredObject,
    UploadedPart,
    UploadSessionUnknown,
)

logger = logging.getLogger(__name__)

# The checksum is only known once the content is written; the header is
# rewritten in place, so the placeholder must have the final length
_PENDING_CHECKSUM = "0" * 64
_HEADER_LIMIT = 64 * 1024

# A key that is, or runs through, an existing object or directory
_PATH_CONFLICTS = (FileNotFoundError, NotADirectoryError, IsADirectoryError)


def _header(checksum, content_type):
    return json.dumps({"checksum": checksum, "content_type": content_type}).encode("utf-8") + b"\n"


class Storage(ObjectStore):

    def __init__(self, path=None, config=None):
        if path is None and config is not None:
            path = config.STORAGE_PATH
        self._root_path = os.path.abspath(path or "./data")
        for sub in ("data", "uploads", "tmp"):
            os.makedirs(os.path.join(self._root_path, sub), exist_ok=True)
        logger.info(f"Filesystem storage rooted at {self._root_path}")

    def _init_path(self, tree, key):
        parts = key.split("/")
        if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts):
            raise StorageError(f"invalid key: {key!r}")
        return os.path.join(self._root_path, tree, *parts)

    def _stage(self, content_type):
        staged = tempfile.NamedTemporaryFile(
            dir=os.path.join(self._root_path, "tmp"), delete=False
        )
        staged.write(_header(_PENDING_CHECKSUM, content_type))
        return staged

    def _seal(self, staged, checksum, content_type):
        """Write the final header over the placeholder."""
        staged.seek(0)
        staged.write(_header(checksum, content_type))

    def _discard(self, staged):
        staged.close()
        try:
            os.unlink(staged.name)
        except FileNotFoundError:
            pass

    def _commit(self, key, staged_path):
        """Move a sealed staged file into place."""
        path = self._init_path("data", key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            os.replace(staged_path, path)
        except OSError as e:
            os.unlink(staged_path)
            raise StorageError(f"cannot store {key!r}: {e}") from e
        return self.head(key)

    def _copy(self, src, dst):
        while True:
            buf = src.read(self.buffer_size)
            if not buf:
                break
            dst.write(buf)

    def _open(self, key):
        """Open an object positioned after its header, with its info."""
        try:
            f = open(self._init_path("data", key), mode="rb")
        except _PATH_CONFLICTS:
            return None
        try:
            header = f.readline(_HEADER_LIMIT)
            meta = json.loads(header)
            st = os.fstat(f.fileno())
        except (OSError, ValueError) as e:
            f.close()
            raise StorageError(f"unreadable object {key!r}: {e}") from e
        info = ObjectInfo(
            key=key,
            size=st.st_size - len(header),
            checksum=meta.get("checksum"),
            content_type=meta.get("content_type"),
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )
        return info, f

    def head(self, key):
        opened = self._open(key)
        if opened is None:
            return None
        info, f = opened
        f.close()
        return info

    def get(self, key):
        opened = self._open(key)
        if opened is None:
            return None
        info, f = opened
        return StoredObject(info=info, body=f)

    def put(self, key, stream, checksum=None, content_type=None):
        self._init_path("data", key)
        reader = DigestingReader(stream)
        with self._stage(content_type) as staged:
            try:
                self._copy(reader, staged)
                actual = reader.hexdigest()
                if checksum is not None and checksum != actual:
                    raise ChecksumMismatch(checksum, actual)
                self._seal(staged, actual, content_type)
            except BaseException:
                self._discard(staged)
                raise
        return self._commit(key, staged.name)

    def delete(self, key):
        try:
            os.remove(self._init_path("data", key))
        except _PATH_CONFLICTS:
            pass

    def list(self, prefix):
        data_root = os.path.join(self._root_path, "data")
        # Only walk the deepest directory the prefix fully names
        base = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        start = os.path.join(data_root, *base.split("/")) if base else data_root
        keys = []
        for dirpath, _dirnames, filenames in os.walk(start):
            rel = os.path.relpath(dirpath, data_root)
            for filename in filenames:
                key = filename if rel == "." else "/".join(rel.split(os.sep) + [filename])
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def _upload_dir(self, upload_id):
        if not upload_id or not all(c in "0123456789abcdef" for c in upload_id):
            raise UploadSessionUnknown(f"invalid upload id: {upload_id!r}")
        return os.path.join(self._root_path, "uploads", upload_id)

    def create_multipart(self, key):
        self._init_path("data", key)
        upload_id = uuid.uuid4().hex
        upload_dir = self._upload_dir(upload_id)
        os.makedirs(upload_dir)
        with open(os.path.join(upload_dir, "info.json"), "w", encoding="utf-8") as f:
            json.dump({"key": key, "initiated": datetime.now(timezone.utc).isoformat()}, f)
        logger.debug(f"Created multipart upload {upload_id} for {key}")
        return upload_id

    def _upload_info(self, upload_id):
        try:
            with open(os.path.join(self._upload_dir(upload_id), "info.json"), encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def resume_multipart(self, key, upload_id):
        info = self._upload_info(upload_id)
        if info is None or info["key"] != key:
            raise UploadSessionUnknown(f"no upload {upload_id} for {key}")
        return _FilesystemMultipartUpload(self, key, upload_id)

    def list_multipart_uploads(self, prefix=""):
        pending = []
        for upload_id in os.listdir(os.path.join(self._root_path, "uploads")):
            info = self._upload_info(upload_id)
            if info is None or not info["key"].startswith(prefix):
                continue
            pending.append(
                PendingUpload(
                    key=info["key"],
                    upload_id=upload_id,
                    initiated=datetime.fromisoformat(info["initiated"]),
                )
            )
        return pending


class _FilesystemMultipartUpload(MultipartUpload):
    def __init__(self, store, key, upload_id):
        super().__init__(key, upload_id)
        self._store = store
        self._dir = store._upload_dir(upload_id)

    def _part_path(self, part_number):
        return os.path.join(self._dir, f"{part_number:05d}")

    def _ensure_exists(self):
        if not os.path.isdir(self._dir):
            raise UploadSessionUnknown(f"upload {self.upload_id} no longer exists")

    def append_part(self, part_number, stream):
        self._ensure_exists()
        md5 = hashlib.md5()
        size = 0
        with tempfile.NamedTemporaryFile(dir=self._dir, delete=False) as staged:
            while True:
                buf = stream.read(self._store.buffer_size)
                if not buf:
                    break
                md5.update(buf)
                size += len(buf)
                staged.write(buf)
        os.replace(staged.name, self._part_path(part_number))
        return UploadedPart(part_number=part_number, etag=md5.hexdigest(), size=size)

    def _copy_part(self, part, staged, sha256):
        md5 = hashlib.md5()
        try:
            with open(self._part_path(part.part_number), "rb") as f:
                while True:
                    buf = f.read(self._store.buffer_size)
                    if not buf:
                        break
                    md5.update(buf)
                    sha256.update(buf)
                    staged.write(buf)
        except FileNotFoundError:
            return False
        return md5.hexdigest() == part.etag

    def complete(self, parts):
        self._ensure_exists()
        sha256 = hashlib.sha256()
        with self._store._stage(None) as staged:
            for part in parts:
                if not self._copy_part(part, staged, sha256):
                    self._store._discard(staged)
                    raise InvalidPart(f"part {part.part_number} does not match upload")
            self._store._seal(staged, sha256.hexdigest(), None)
        info = self._store._commit(self.key, staged.name)
        shutil.rmtree(self._dir, ignore_errors=True)
        return info

    def abort(self):
        shutil.rmtree(self._dir, ignore_errors=True)
