"""
Digest engine for the container registry.

Computes and parses content digests in the canonical ``algorithm:hex`` form.
Only sha256 is supported.
"""

import hashlib
import re

ALGORITHM = "sha256"
PREFIX = ALGORITHM + ":"

CHUNK_SIZE = 64 * 1024

_DIGEST_RE = re.compile(r"^([a-z0-9]+(?:[+._-][a-z0-9]+)*):([a-zA-Z0-9=_-]+)$")
_SHA256_HEX_RE = re.compile(r"^[a-f0-9]{64}$")


class DigestError(ValueError):
    """Base class for digest parsing failures."""


class DigestMalformed(DigestError):
    """The digest string is not of the form ``algorithm:hex``."""


class DigestUnsupported(DigestError):
    """The digest uses an algorithm other than sha256."""


def compute_sha256(data: bytes) -> str:
    """
    Compute SHA256 digest in OCI/Docker format.

    Args:
        data: Bytes to hash

    Returns:
        String in format "sha256:<64 hex chars>"

    Example:
        >>> compute_sha256(b"hello")
        'sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824'
    """
    return format_digest(hashlib.sha256(data).digest())


def format_digest(raw_hash: bytes) -> str:
    """Encode a raw sha256 hash as ``sha256:<lowercase hex>``."""
    return PREFIX + raw_hash.hex()


def parse_digest(digest: str) -> tuple[str, bytes]:
    """
    Split a digest string into its algorithm and raw hash bytes.

    Raises:
        DigestMalformed: If the string is not a well-formed digest.
        DigestUnsupported: If the algorithm is not sha256.

    Example:
        >>> algorithm, raw = parse_digest("sha256:" + "ab" * 32)
        >>> algorithm, len(raw)
        ('sha256', 32)
    """
    match = _DIGEST_RE.match(digest or "")
    if not match:
        raise DigestMalformed(f"malformed digest: {digest!r}")
    algorithm, encoded = match.groups()
    if algorithm != ALGORITHM:
        raise DigestUnsupported(f"unsupported digest algorithm: {algorithm}")
    if not _SHA256_HEX_RE.match(encoded):
        raise DigestMalformed(f"malformed sha256 digest: {digest!r}")
    return algorithm, bytes.fromhex(encoded)


def digest_hex(digest: str) -> str:
    """Return the lowercase hex part of a validated digest string."""
    return parse_digest(digest)[1].hex()


def is_digest(reference: str) -> bool:
    """True if the reference looks like a digest rather than a tag."""
    return reference.startswith(ALGORITHM)


class DigestingReader:
    """
    File-like wrapper that hashes and counts bytes as they are read.

    Lets a single streaming pass feed both a storage write and the digest
    computation, so the payload is never read twice or held in memory.

    Example:
        >>> import io
        >>> reader = DigestingReader(io.BytesIO(b"hello"))
        >>> reader.read()
        b'hello'
        >>> reader.size
        5
        >>> reader.digest()
        'sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824'
    """

    def __init__(self, stream):
        self._stream = stream
        self._hash = hashlib.sha256()
        self.size = 0

    def read(self, size=-1):
        data = self._stream.read(size)
        if data:
            self._hash.update(data)
            self.size += len(data)
        return data

    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    def digest(self) -> str:
        return format_digest(self._hash.digest())

    def close(self):
        close = getattr(self._stream, "close", None)
        if close is not None:
            close()


def compute_digest(stream) -> str:
    """Consume a byte stream to completion and return its digest."""
    reader = DigestingReader(stream)
    while reader.read(CHUNK_SIZE):
        pass
    return reader.digest()
