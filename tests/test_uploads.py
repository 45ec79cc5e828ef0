"""Upload session protocol: token handling and the initiate/append/finalize state machine."""

import io
import json
import os
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from objregistry.errors import ErrorCode, RangeMismatch, RegistryError
from objregistry.storage import UploadedPart
from objregistry.storage.s3 import Storage as S3Storage
from objregistry.uploads import (
    BlobUploader,
    UploadSession,
    parse_content_range,
    reap_stale_uploads,
    upload_key,
)
from tests.helpers import sha256_digest

NAME = "library/app"


@pytest.fixture
def uploader(store):
    return BlobUploader(store)


def roundtrip(session):
    """Pass a session through its Location URL the way a client would."""
    query = parse_qs(urlparse(session.location(NAME)).query)
    return UploadSession.from_token(session.session_id, query["_state"][0])


def push_chunks(uploader, chunks):
    session = roundtrip(uploader.initiate(NAME))
    for chunk in chunks:
        session = roundtrip(uploader.append_chunk(NAME, session, io.BytesIO(chunk), session.offset))
    return session


class TestUploadSession:
    def test_token_roundtrip(self):
        session = UploadSession(
            session_id="6f1c3e4e-0d7a-4b8e-9a8e-3f0f6c1d2b11",
            upload_id="u1",
            parts=(UploadedPart(1, "e1", 10), UploadedPart(2, "e2", 5)),
            offset=15,
        )
        assert roundtrip(session) == session
        assert session.range_header == "0-14"

    def test_empty_session_range(self):
        assert UploadSession(session_id="x", upload_id="u").range_header == "0-0"

    @pytest.mark.parametrize(
        "state",
        [
            "not json",
            json.dumps({"v": 99, "upload_id": "u", "parts": [], "offset": 0}),
            json.dumps({"v": 1, "upload_id": "", "parts": [], "offset": 0}),
            json.dumps({"v": 1, "upload_id": "u", "parts": [[2, "e", 3]], "offset": 3}),
            json.dumps({"v": 1, "upload_id": "u", "parts": [[1, "e", -1]], "offset": -1}),
            json.dumps({"v": 1, "upload_id": "u", "parts": [[1, "e", 3]], "offset": 4}),
        ],
    )
    def test_rejects_inconsistent_tokens(self, state):
        with pytest.raises(RegistryError) as exc_info:
            UploadSession.from_token("6f1c3e4e-0d7a-4b8e-9a8e-3f0f6c1d2b11", state)
        assert exc_info.value.code is ErrorCode.BLOB_UPLOAD_INVALID

    def test_missing_token_is_unknown_upload(self):
        with pytest.raises(RegistryError) as exc_info:
            UploadSession.from_token("6f1c3e4e-0d7a-4b8e-9a8e-3f0f6c1d2b11", None)
        assert exc_info.value.code is ErrorCode.BLOB_UPLOAD_UNKNOWN

    def test_bad_session_id_is_unknown_upload(self):
        with pytest.raises(RegistryError) as exc_info:
            UploadSession.from_token("../../etc", '{"v":1}')
        assert exc_info.value.code is ErrorCode.BLOB_UPLOAD_UNKNOWN


@pytest.mark.parametrize(
    "header,expected",
    [(None, 0), ("", 0), ("0-1023", 0), ("1024-2047", 1024), ("bytes 512-1023/2048", 512), ("7-", 7)],
)
def test_parse_content_range(header, expected):
    assert parse_content_range(header) == expected


def test_parse_content_range_rejects_garbage():
    with pytest.raises(RegistryError) as exc_info:
        parse_content_range("abc")
    assert exc_info.value.status == 416


class TestBlobUploader:
    def test_initiate_without_body(self, uploader, store):
        session = uploader.initiate(NAME)
        assert session.offset == 0
        assert session.parts == ()
        assert [p.key for p in store.list_multipart_uploads()] == [upload_key(NAME, session.session_id)]

    def test_initiate_with_body_counts_as_first_chunk(self, uploader):
        session = uploader.initiate(NAME, io.BytesIO(b"abc"))
        assert session.offset == 3
        assert [p.part_number for p in session.parts] == [1]

    def test_monolithic_upload(self, uploader, store):
        data = os.urandom(4096)
        digest = sha256_digest(data)
        session = uploader.initiate(NAME)

        assert uploader.finalize(NAME, session, io.BytesIO(data), digest) == digest

        info = store.head(f"{NAME}/blobs/{digest}")
        assert info.size == len(data)
        assert store.get(f"{NAME}/blobs/{digest}").read() == data
        # The unused multipart upload was released
        assert store.list_multipart_uploads() == []

    @pytest.mark.parametrize("sizes", [[1024], [1, 1, 1], [100, 0, 3000, 7], [5000, 5000]])
    def test_chunked_equals_monolithic(self, uploader, store, sizes):
        data = os.urandom(sum(sizes))
        digest = sha256_digest(data)
        chunks, pos = [], 0
        for size in sizes:
            chunks.append(data[pos:pos + size])
            pos += size

        session = push_chunks(uploader, chunks)
        assert session.offset == len(data)
        uploader.finalize(NAME, session, None, digest)

        assert store.get(f"{NAME}/blobs/{digest}").read() == data
        assert store.head(upload_key(NAME, session.session_id)) is None
        assert store.list_multipart_uploads() == []

    def test_finalize_with_trailing_chunk(self, uploader, store):
        session = push_chunks(uploader, [b"head-"])
        digest = sha256_digest(b"head-tail")
        uploader.finalize(NAME, session, io.BytesIO(b"tail"), digest)
        assert store.get(f"{NAME}/blobs/{digest}").read() == b"head-tail"

    def test_range_mismatch_leaves_session_usable(self, uploader, store):
        session = push_chunks(uploader, [b"a" * 10])

        with pytest.raises(RangeMismatch) as exc_info:
            uploader.append_chunk(NAME, session, io.BytesIO(b"b" * 10), start=0)
        assert exc_info.value.status == 416
        assert exc_info.value.code is ErrorCode.SIZE_INVALID

        session = uploader.append_chunk(NAME, session, io.BytesIO(b"b" * 10), start=10)
        assert session.offset == 20
        digest = sha256_digest(b"a" * 10 + b"b" * 10)
        uploader.finalize(NAME, session, None, digest)
        assert store.head(f"{NAME}/blobs/{digest}").size == 20

    def test_empty_chunk_is_a_no_op(self, uploader):
        session = uploader.initiate(NAME)
        assert uploader.append_chunk(NAME, session, io.BytesIO(b""), 0) == session

    def test_digest_mismatch_after_chunks(self, uploader, store):
        session = push_chunks(uploader, [b"real content"])
        wrong = sha256_digest(b"other content")

        with pytest.raises(RegistryError) as exc_info:
            uploader.finalize(NAME, session, None, wrong)

        assert exc_info.value.code is ErrorCode.DIGEST_INVALID
        assert store.head(f"{NAME}/blobs/{wrong}") is None
        assert store.head(upload_key(NAME, session.session_id)) is None

    def test_digest_mismatch_monolithic(self, uploader, store):
        session = uploader.initiate(NAME)
        wrong = sha256_digest(b"expected")
        with pytest.raises(RegistryError) as exc_info:
            uploader.finalize(NAME, session, io.BytesIO(b"actual"), wrong)
        assert exc_info.value.code is ErrorCode.DIGEST_INVALID
        assert store.list(f"{NAME}/blobs/") == []

    def test_zero_length_finalize(self, uploader, store):
        session = uploader.initiate(NAME)
        with pytest.raises(RegistryError) as exc_info:
            uploader.finalize(NAME, session, None, sha256_digest(b""))
        assert exc_info.value.code is ErrorCode.SIZE_INVALID
        assert store.list_multipart_uploads() == []

    def test_malformed_digest_is_rejected_before_any_change(self, uploader, store):
        session = push_chunks(uploader, [b"data"])
        with pytest.raises(RegistryError) as exc_info:
            uploader.finalize(NAME, session, None, "md5:abc")
        assert exc_info.value.code is ErrorCode.DIGEST_INVALID
        assert len(store.list_multipart_uploads()) == 1

    def test_abort(self, uploader, store):
        session = push_chunks(uploader, [b"data"])
        uploader.abort(NAME, session)
        assert store.list_multipart_uploads() == []

        with pytest.raises(RegistryError) as exc_info:
            uploader.append_chunk(NAME, session, io.BytesIO(b"more"), session.offset)
        assert exc_info.value.code is ErrorCode.BLOB_UPLOAD_UNKNOWN

    def test_session_is_bound_to_its_repository(self, uploader):
        session = uploader.initiate(NAME)
        with pytest.raises(RegistryError) as exc_info:
            uploader.status("other/repo", session)
        assert exc_info.value.code is ErrorCode.BLOB_UPLOAD_UNKNOWN


def test_reap_stale_uploads(store):
    uploader = BlobUploader(store)
    uploader.initiate(NAME)
    unrelated = store.create_multipart("scratch/object")

    later = datetime.now(timezone.utc) + timedelta(hours=2)
    assert reap_stale_uploads(store, timedelta(hours=3), now=later) == 0
    assert reap_stale_uploads(store, timedelta(hours=1), now=later) == 1

    assert [p.upload_id for p in store.list_multipart_uploads()] == [unrelated]


class TestMinimumPartSize:
    @pytest.fixture
    def store(self, store):
        store.min_part_size = 8
        return store

    def test_small_chunk_then_more_is_rejected(self, uploader, store):
        session = push_chunks(uploader, [b"tiny"])

        with pytest.raises(RegistryError) as exc_info:
            uploader.append_chunk(NAME, session, io.BytesIO(b"more"), session.offset)
        assert exc_info.value.code is ErrorCode.SIZE_INVALID
        assert exc_info.value.status == 400

        # Nothing was added; the upload can still be finished as it stands
        digest = sha256_digest(b"tiny")
        uploader.finalize(NAME, session, None, digest)
        assert store.get(f"{NAME}/blobs/{digest}").read() == b"tiny"

    def test_small_chunk_then_trailing_body_is_rejected(self, uploader):
        session = push_chunks(uploader, [b"tiny"])
        with pytest.raises(RegistryError) as exc_info:
            uploader.finalize(NAME, session, io.BytesIO(b"tail"), sha256_digest(b"tinytail"))
        assert exc_info.value.code is ErrorCode.SIZE_INVALID

    def test_large_chunks_and_small_last_chunk(self, uploader, store):
        chunks = [b"a" * 8, b"b" * 9, b"c"]
        session = push_chunks(uploader, chunks)
        digest = sha256_digest(b"".join(chunks))
        uploader.finalize(NAME, session, None, digest)
        assert store.head(f"{NAME}/blobs/{digest}").size == 18


def test_s3_driver_declares_part_minimum():
    assert S3Storage.min_part_size == 5 * 1024 * 1024
