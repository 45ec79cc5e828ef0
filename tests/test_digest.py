import doctest
import hashlib
import io

import pytest

import objregistry.digest
from objregistry.digest import (
    DigestingReader,
    DigestMalformed,
    DigestUnsupported,
    compute_digest,
    compute_sha256,
    digest_hex,
    format_digest,
    is_digest,
    parse_digest,
)


def test_compute_sha256_known_value():
    assert compute_sha256(b"hello") == (
        "sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
    )


def test_compute_digest_matches_in_memory_hash():
    data = b"x" * 200_000
    assert compute_digest(io.BytesIO(data)) == compute_sha256(data)


def test_format_and_parse_are_inverse():
    raw = hashlib.sha256(b"layer").digest()
    digest = format_digest(raw)
    assert digest.startswith("sha256:")
    assert parse_digest(digest) == ("sha256", raw)
    assert digest_hex(digest) == raw.hex()


@pytest.mark.parametrize("digest", ["", "sha256", "sha256:", "sha256:xyz", "sha256:" + "A" * 64])
def test_parse_rejects_malformed(digest):
    with pytest.raises(DigestMalformed):
        parse_digest(digest)


def test_parse_rejects_other_algorithms():
    with pytest.raises(DigestUnsupported):
        parse_digest("sha512:" + "ab" * 64)


def test_digesting_reader_hashes_while_copying():
    data = b"0123456789" * 1000
    reader = DigestingReader(io.BytesIO(data))
    sink = io.BytesIO()
    while True:
        buf = reader.read(333)
        if not buf:
            break
        sink.write(buf)

    assert sink.getvalue() == data
    assert reader.size == len(data)
    assert reader.digest() == compute_sha256(data)


def test_is_digest():
    assert is_digest("sha256:" + "0" * 64)
    assert not is_digest("latest")


def test_docstring_examples():
    result = doctest.testmod(objregistry.digest)
    assert result.attempted > 0
    assert result.failed == 0
