"""
Registry error codes.

Error kinds are a fixed enumeration. Every failure raises a fresh
``RegistryError`` carrying one kind plus an optional detail payload; the
Flask error handler in ``routes`` renders it as the protocol's JSON envelope:

    {"errors": [{"code": "BLOB_UNKNOWN", "message": "...", "detail": ...}]}
"""

from enum import Enum


class ErrorCode(Enum):
    """Distribution API error codes with their HTTP status and message."""

    BLOB_UNKNOWN = (404, "blob unknown to registry")
    BLOB_UPLOAD_INVALID = (400, "blob upload invalid")
    BLOB_UPLOAD_UNKNOWN = (404, "blob upload unknown to registry")
    DIGEST_INVALID = (400, "provided digest did not match uploaded content")
    MANIFEST_INVALID = (400, "manifest invalid")
    MANIFEST_UNKNOWN = (404, "manifest unknown to registry")
    NAME_INVALID = (400, "invalid repository name")
    NAME_UNKNOWN = (404, "repository name not known to registry")
    SIZE_INVALID = (400, "provided length did not match content length")
    TAG_INVALID = (400, "manifest tag did not match URI")
    UNAUTHORIZED = (401, "authentication required")
    UNSUPPORTED = (405, "the operation is unsupported")

    def __init__(self, status, message):
        self.status = status
        self.message = message


class RegistryError(Exception):
    """
    A protocol-level failure.

    Args:
        code: The error kind.
        detail: Optional structured payload returned to the client.
        status: Overrides the kind's default HTTP status (e.g. 416 for a
            range discontinuity, which is reported as SIZE_INVALID).
    """

    def __init__(self, code: ErrorCode, detail=None, status: int | None = None):
        super().__init__(f"{code.name}: {detail}" if detail is not None else code.name)
        self.code = code
        self.detail = detail
        self.status = status or code.status

    def to_dict(self) -> dict:
        error = {"code": self.code.name, "message": self.code.message}
        if self.detail is not None:
            error["detail"] = self.detail
        return error


class RangeMismatch(RegistryError):
    """The client's Content-Range does not continue from the session's offset."""

    def __init__(self, expected: int, got: int):
        super().__init__(
            ErrorCode.SIZE_INVALID,
            detail={"expected_offset": expected, "offset": got},
            status=416,
        )
        self.expected = expected
        self.got = got
