"""
Manifest storage.

A pushed manifest is written twice: under the reference it was pushed to
(``{name}/manifests/latest``) and under its own digest
(``{name}/manifests/sha256:...``), so it can be pulled either way. Deleting
a reference only removes the reference copy; the digest copy may still be
what other tags point at.
"""

import io
import logging

from .digest import DigestingReader, digest_hex, is_digest
from .errors import ErrorCode, RegistryError
from .storage import ObjectInfo, StoredObject

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_TYPE = "application/vnd.docker.distribution.manifest.v2+json"


def manifest_key(name: str, reference: str) -> str:
    return f"{name}/manifests/{reference}"


def manifest_digest(info: ObjectInfo, reference: str) -> str | None:
    """Digest of a stored manifest, from its metadata or its digest reference."""
    if info.checksum:
        return f"sha256:{info.checksum}"
    if is_digest(reference):
        return reference
    return None


def put_manifest(store, name: str, reference: str, body, content_type: str | None = None,
                 max_size: int = 4 * 1024 * 1024) -> str:
    """
    Store a manifest under its reference and its digest.

    The body is read once; the digest is computed as a side effect of that read.

    Args:
        store: Object store.
        name: Repository name (validated).
        reference: Tag or digest the client pushed to (validated).
        body: Readable byte stream, or None if the request had no body.
        content_type: Manifest media type; defaults to the Docker v2 schema 2 type.
        max_size: Largest accepted manifest in bytes.

    Returns:
        The manifest digest, for the Docker-Content-Digest header.

    Raises:
        RegistryError: MANIFEST_INVALID for a missing, empty or oversized
            body; DIGEST_INVALID when pushed by digest and the content hashes
            to something else.
    """
    if body is None:
        raise RegistryError(ErrorCode.MANIFEST_INVALID, detail=f"missing body for {name}:{reference}")

    reader = DigestingReader(body)
    data = reader.read(max_size + 1)
    if not data:
        raise RegistryError(ErrorCode.MANIFEST_INVALID, detail=f"empty body for {name}:{reference}")
    # Short reads are allowed by the stream protocol; drain up to the limit
    while len(data) <= max_size:
        more = reader.read(max_size + 1 - len(data))
        if not more:
            break
        data += more
    if len(data) > max_size:
        raise RegistryError(
            ErrorCode.MANIFEST_INVALID, detail=f"manifest exceeds {max_size} bytes"
        )

    digest = reader.digest()
    if is_digest(reference) and reference != digest:
        logger.warning(f"Manifest digest mismatch: pushed to {reference}, content is {digest}")
        raise RegistryError(
            ErrorCode.DIGEST_INVALID, detail=f"content does not match {reference}"
        )

    content_type = content_type or DEFAULT_MANIFEST_TYPE
    checksum = digest_hex(digest)
    # Reference copy first, digest copy second; when the reference is the
    # digest both writes target the same key with identical content.
    for key in (manifest_key(name, reference), manifest_key(name, digest)):
        store.put(key, io.BytesIO(data), checksum=checksum, content_type=content_type)

    logger.info(
        f"Manifest stored: image='{name}', reference='{reference}', digest={digest}, "
        f"size={len(data)} bytes, type={content_type}"
    )
    return digest


def head_manifest(store, name: str, reference: str) -> ObjectInfo:
    """Return manifest metadata or raise MANIFEST_UNKNOWN."""
    info = store.head(manifest_key(name, reference))
    if info is None:
        raise RegistryError(ErrorCode.MANIFEST_UNKNOWN, detail=f"missing manifest {name}:{reference}")
    return info


def get_manifest(store, name: str, reference: str) -> StoredObject:
    """Open a manifest for reading or raise MANIFEST_UNKNOWN."""
    obj = store.get(manifest_key(name, reference))
    if obj is None:
        raise RegistryError(ErrorCode.MANIFEST_UNKNOWN, detail=f"missing manifest {name}:{reference}")
    return obj


def delete_manifest(store, name: str, reference: str) -> None:
    """Remove the reference copy only. Deleting an absent manifest succeeds."""
    store.delete(manifest_key(name, reference))
    logger.info(f"Manifest deleted: image='{name}', reference='{reference}'")
