"""
OCI-compliant container registry backed by object storage.

This registry implements the push, pull and delete surface of the OCI
Distribution Specification v1.0 with backward compatibility for the Docker
Registry v2 API. Blobs and manifests are kept in a pluggable object store
(in-memory, local filesystem or S3).

Features:
    - Resumable, chunked blob uploads with no server-side session state
    - Digest verification of every committed blob and manifest
    - Manifests addressable by tag and by digest
    - Cross-repository blob mounts
    - Reaper for abandoned uploads
    - Shared-secret Basic authentication
    - Configurable via environment variables

Storage layout:
    {name}/blobs/{digest}             committed blobs
    {name}/manifests/{tag|digest}     manifests, written under both keys
    {name}/_uploads/{session}         in-flight multipart uploads
"""

__version__ = "0.1.0"

# Import key components for convenience
from .config import Config
from .digest import (
    DigestingReader,
    compute_digest,
    compute_sha256,
    format_digest,
    parse_digest,
)
from .errors import ErrorCode, RegistryError
from .routes import create_app
from .uploads import BlobUploader, UploadSession, reap_stale_uploads

__all__ = [
    "BlobUploader",
    "Config",
    "DigestingReader",
    "ErrorCode",
    "RegistryError",
    "UploadSession",
    "compute_digest",
    "compute_sha256",
    "create_app",
    "format_digest",
    "parse_digest",
    "reap_stale_uploads",
]
