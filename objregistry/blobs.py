"""
Committed blob access.

Blobs live at ``{name}/blobs/{digest}`` and only appear there once their
content has been verified against the digest.
"""

import logging

from .digest import digest_hex
from .errors import ErrorCode, RegistryError
from .storage import ChecksumMismatch, ObjectInfo, StoredObject

logger = logging.getLogger(__name__)

BLOB_CONTENT_TYPE = "application/octet-stream"


def blob_key(name: str, digest: str) -> str:
    return f"{name}/blobs/{digest}"


def head_blob(store, name: str, digest: str) -> ObjectInfo:
    """Return blob metadata or raise BLOB_UNKNOWN."""
    info = store.head(blob_key(name, digest))
    if info is None:
        raise RegistryError(ErrorCode.BLOB_UNKNOWN, detail=f"missing digest '{digest}' for {name}")
    return info


def get_blob(store, name: str, digest: str) -> StoredObject:
    """Open a blob for streaming or raise BLOB_UNKNOWN."""
    obj = store.get(blob_key(name, digest))
    if obj is None:
        raise RegistryError(ErrorCode.BLOB_UNKNOWN, detail=f"missing digest '{digest}' for {name}")
    return obj


def delete_blob(store, name: str, digest: str) -> None:
    """Delete a blob. Deleting an absent blob succeeds."""
    store.delete(blob_key(name, digest))
    logger.info(f"Blob deleted: image='{name}', digest='{digest}'")


def mount_blob(store, name: str, from_name: str, digest: str) -> bool:
    """
    Copy a blob from another repository into ``name``.

    The copy is verified against the digest on the way through, so a
    corrupt source never becomes visible in the target repository.

    Returns:
        True if the blob now exists in ``name``, False if the source
        repository does not hold it (the caller falls back to a regular upload).
    """
    if store.head(blob_key(name, digest)) is not None:
        return True

    source = store.get(blob_key(from_name, digest))
    if source is None:
        logger.debug(f"Mount source missing: from='{from_name}', digest='{digest}'")
        return False

    try:
        store.put(
            blob_key(name, digest),
            source.body,
            checksum=digest_hex(digest),
            content_type=BLOB_CONTENT_TYPE,
        )
    except ChecksumMismatch:
        logger.error(f"Mount source corrupt: from='{from_name}', digest='{digest}'")
        return False
    finally:
        source.body.close()

    logger.info(f"Blob mounted: image='{name}', from='{from_name}', digest='{digest}'")
    return True
