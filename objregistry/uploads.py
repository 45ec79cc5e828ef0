"""
Resumable, chunked blob uploads.

The server keeps no session state between requests. Everything needed to
continue an upload (backend multipart upload id, committed parts, byte
offset) travels to the client inside the ``Location`` URL as the ``_state``
query parameter and comes back on the next request:

    POST  /v2/<name>/blobs/uploads/               -> 202, Location, Range: 0-0
    PATCH <Location>  Content-Range: 0-1023       -> 202, Location, Range: 0-1023
    PATCH <Location>  Content-Range: 1024-2047    -> 202, Location, Range: 0-2047
    PUT   <Location>&digest=sha256:...            -> 201, Docker-Content-Digest

The backend multipart upload targets the temporary key
``{name}/_uploads/{session_id}``. On finalize the assembled object is read
back, re-hashed while it is copied to ``{name}/blobs/{digest}`` and rejected
if the hash does not match the digest the client asserted.

Tampering with the token only hurts the client that does it: every field is
validated, the backend refuses unknown upload ids and the final digest check
guards what becomes visible.
"""

import json
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from .blobs import BLOB_CONTENT_TYPE, blob_key
from .digest import CHUNK_SIZE, digest_hex
from .errors import ErrorCode, RangeMismatch, RegistryError
from .storage import ChecksumMismatch, InvalidPart, UploadedPart, UploadSessionUnknown
from .validation import validate_digest

logger = logging.getLogger(__name__)

TOKEN_VERSION = 1
STATE_PARAM = "_state"
UPLOADS_SEGMENT = "_uploads"


def upload_key(name: str, session_id: str) -> str:
    return f"{name}/{UPLOADS_SEGMENT}/{session_id}"


def _invalid(detail):
    return RegistryError(ErrorCode.BLOB_UPLOAD_INVALID, detail=detail)


@dataclass(frozen=True)
class UploadSession:
    """
    Client-held state of one upload.

    Attributes:
        session_id: Random UUID naming the upload in URLs.
        upload_id: Backend multipart upload id.
        parts: Committed parts, numbered 1..n in order.
        offset: Bytes received so far; always the sum of part sizes.
    """

    session_id: str
    upload_id: str
    parts: tuple[UploadedPart, ...] = ()
    offset: int = 0

    def with_part(self, part: UploadedPart) -> "UploadSession":
        return replace(self, parts=self.parts + (part,), offset=self.offset + part.size)

    def to_token(self) -> str:
        return json.dumps(
            {
                "v": TOKEN_VERSION,
                "upload_id": self.upload_id,
                "parts": [[p.part_number, p.etag, p.size] for p in self.parts],
                "offset": self.offset,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_token(cls, session_id: str, token: str | None) -> "UploadSession":
        """
        Rebuild a session from the token a client sent back.

        Raises:
            RegistryError: BLOB_UPLOAD_UNKNOWN if the session id or token is
                missing, BLOB_UPLOAD_INVALID if the token is malformed or
                internally inconsistent.
        """
        try:
            uuid.UUID(session_id)
        except (TypeError, ValueError):
            raise RegistryError(ErrorCode.BLOB_UPLOAD_UNKNOWN, detail=f"unknown upload {session_id}")
        if not token:
            raise RegistryError(ErrorCode.BLOB_UPLOAD_UNKNOWN, detail="missing upload state")

        try:
            data = json.loads(token)
        except ValueError:
            raise _invalid("upload state is not valid JSON")
        if not isinstance(data, dict) or data.get("v") != TOKEN_VERSION:
            raise _invalid("unsupported upload state version")

        upload_id = data.get("upload_id")
        if not isinstance(upload_id, str) or not upload_id:
            raise _invalid("upload state has no upload id")

        raw_parts = data.get("parts")
        if not isinstance(raw_parts, list):
            raise _invalid("upload state parts must be a list")
        parts = []
        for expected_number, raw in enumerate(raw_parts, 1):
            if not (isinstance(raw, list) and len(raw) == 3):
                raise _invalid(f"malformed part {expected_number}")
            number, etag, size = raw
            if number != expected_number or isinstance(number, bool):
                raise _invalid(f"part {expected_number} is out of sequence")
            if not isinstance(etag, str) or not isinstance(size, int) or isinstance(size, bool) or size < 0:
                raise _invalid(f"malformed part {expected_number}")
            parts.append(UploadedPart(part_number=number, etag=etag, size=size))

        offset = data.get("offset")
        if not isinstance(offset, int) or isinstance(offset, bool) or offset != sum(p.size for p in parts):
            raise _invalid("upload state offset does not match its parts")

        return cls(session_id=session_id, upload_id=upload_id, parts=tuple(parts), offset=offset)

    def location(self, name: str) -> str:
        return f"/v2/{name}/blobs/uploads/{self.session_id}?{STATE_PARAM}={quote(self.to_token(), safe='')}"

    @property
    def range_header(self) -> str:
        """Inclusive byte range received so far, as the Range header expects."""
        return f"0-{self.offset - 1}" if self.offset else "0-0"


def parse_content_range(header: str | None) -> int:
    """
    Return the starting offset claimed by a Content-Range header.

    Accepts ``<start>-<end>`` as sent by Docker clients and the RFC form
    ``bytes <start>-<end>/<total>``. A missing header means offset 0.
    """
    if not header:
        return 0
    value = header.strip()
    if value.startswith("bytes "):
        value = value[len("bytes "):].split("/", 1)[0]
    start, sep, end = value.partition("-")
    if not sep or not start.isdigit() or (end and not end.isdigit()):
        raise RegistryError(
            ErrorCode.SIZE_INVALID, detail=f"malformed Content-Range: {header}", status=416
        )
    return int(start)


class _PrefixedReader:
    """Replays bytes already read from a stream before the rest of it."""

    def __init__(self, prefix, stream):
        self._prefix = prefix
        self._stream = stream

    def read(self, size=-1):
        if not self._prefix:
            return self._stream.read(size)
        if size is None or size < 0:
            data, self._prefix = self._prefix + self._stream.read(), b""
            return data
        data, self._prefix = self._prefix[:size], self._prefix[size:]
        return data


def _non_empty(body):
    """Return a reader over ``body``, or None if it carries no bytes."""
    if body is None:
        return None
    first = body.read(CHUNK_SIZE)
    if not first:
        return None
    return _PrefixedReader(first, body)


class BlobUploader:
    """Drives upload sessions against an object store."""

    def __init__(self, store):
        self.store = store

    def _resume(self, name, session):
        try:
            return self.store.resume_multipart(upload_key(name, session.session_id), session.upload_id)
        except UploadSessionUnknown as e:
            logger.warning(f"Unknown upload: image='{name}', session={session.session_id}")
            raise RegistryError(
                ErrorCode.BLOB_UPLOAD_UNKNOWN, detail=f"unknown upload {session.session_id}"
            ) from e

    def initiate(self, name: str, body=None) -> UploadSession:
        """
        Start an upload. A non-empty body is stored as the first chunk.
        """
        session_id = str(uuid.uuid4())
        upload_id = self.store.create_multipart(upload_key(name, session_id))
        session = UploadSession(session_id=session_id, upload_id=upload_id)
        logger.info(f"Upload started: image='{name}', session={session_id}")

        if body is not None:
            session = self.append_chunk(name, session, body, start=0)
        return session

    def append_chunk(self, name: str, session: UploadSession, body, start: int = 0) -> UploadSession:
        """
        Append one chunk as the next backend part.

        Raises:
            RangeMismatch: ``start`` is not the session's current offset.
                Nothing is written.
            RegistryError: SIZE_INVALID if the previous chunk is smaller
                than the backend allows for a non-final part.
        """
        if start != session.offset:
            logger.warning(
                f"Range mismatch: image='{name}', session={session.session_id}, "
                f"expected={session.offset}, got={start}"
            )
            raise RangeMismatch(session.offset, start)

        chunk = _non_empty(body)
        if chunk is None:
            logger.debug(f"Empty chunk ignored: session={session.session_id}")
            return session

        self._check_last_part(name, session)
        upload = self._resume(name, session)
        part = upload.append_part(len(session.parts) + 1, chunk)
        session = session.with_part(part)
        logger.debug(
            f"Chunk stored: session={session.session_id}, part={part.part_number}, "
            f"size={part.size}, offset={session.offset}"
        )
        return session

    def finalize(self, name: str, session: UploadSession, body, digest: str) -> str:
        """
        Commit the upload as ``{name}/blobs/{digest}``.

        Without earlier chunks the body is written directly (monolithic
        upload). Otherwise a trailing body becomes the last part, the parts
        are assembled and the result is verified while it is copied.

        Returns:
            The committed digest.

        Raises:
            RegistryError: DIGEST_INVALID if the digest is malformed or does
                not match the content, SIZE_INVALID if nothing was uploaded.
        """
        validate_digest(digest)
        expected = digest_hex(digest)
        target = blob_key(name, digest)
        upload = self._resume(name, session)
        chunk = _non_empty(body)

        if not session.parts:
            upload.abort()
            if chunk is None:
                logger.warning(f"Empty upload rejected: image='{name}', session={session.session_id}")
                raise RegistryError(ErrorCode.SIZE_INVALID, detail="no content was uploaded")
            self._commit(target, chunk, expected, digest)
            logger.info(f"Blob committed (monolithic): image='{name}', digest='{digest}'")
            return digest

        if chunk is not None:
            self._check_last_part(name, session)
            session = session.with_part(upload.append_part(len(session.parts) + 1, chunk))

        try:
            upload.complete(list(session.parts))
        except InvalidPart as e:
            logger.warning(f"Upload parts rejected: session={session.session_id}: {e}")
            upload.abort()
            raise _invalid("uploaded parts could not be assembled") from e

        temp = upload_key(name, session.session_id)
        assembled = self.store.get(temp)
        if assembled is None:
            raise RegistryError(ErrorCode.BLOB_UPLOAD_UNKNOWN, detail="assembled upload disappeared")
        try:
            self._commit(target, assembled.body, expected, digest)
        finally:
            assembled.body.close()
            self.store.delete(temp)

        logger.info(
            f"Blob committed: image='{name}', digest='{digest}', "
            f"parts={len(session.parts)}, size={session.offset}"
        )
        return digest

    def _check_last_part(self, name, session):
        # The current last part stops being the last one once another is added
        minimum = self.store.min_part_size
        if session.parts and session.parts[-1].size < minimum:
            logger.warning(
                f"Chunk below backend minimum: image='{name}', session={session.session_id}, "
                f"size={session.parts[-1].size}, minimum={minimum}"
            )
            raise RegistryError(
                ErrorCode.SIZE_INVALID,
                detail=f"chunks other than the last must be at least {minimum} bytes",
            )

    def _commit(self, key, stream, expected, digest):
        try:
            self.store.put(key, stream, checksum=expected, content_type=BLOB_CONTENT_TYPE)
        except ChecksumMismatch as e:
            logger.warning(f"Digest mismatch for {key}: {e}")
            raise RegistryError(
                ErrorCode.DIGEST_INVALID, detail=f"content does not match {digest}"
            ) from e

    def abort(self, name: str, session: UploadSession) -> None:
        """Cancel the upload and release its backend resources."""
        self._resume(name, session).abort()
        logger.info(f"Upload aborted: image='{name}', session={session.session_id}")

    def status(self, name: str, session: UploadSession) -> UploadSession:
        """Confirm the upload still exists on the backend."""
        self._resume(name, session)
        return session


def reap_stale_uploads(store, max_age: timedelta, now: datetime | None = None) -> int:
    """
    Abort upload sessions older than ``max_age``.

    Clients that walk away from an upload leave a backend multipart upload
    behind; this is the only thing that reclaims it.

    Returns:
        Number of uploads aborted.
    """
    cutoff = (now or datetime.now(timezone.utc)) - max_age
    reaped = 0
    for pending in store.list_multipart_uploads():
        if f"/{UPLOADS_SEGMENT}/" not in pending.key or pending.initiated >= cutoff:
            continue
        try:
            store.resume_multipart(pending.key, pending.upload_id).abort()
        except UploadSessionUnknown:
            continue
        logger.info(f"Reaped stale upload {pending.upload_id} ({pending.key}, started {pending.initiated})")
        reaped += 1
    return reaped
