"""
S3 object store.

Works with AWS S3 and S3-compatible services (MinIO, Ceph, R2, ...). The
sha256 of each object is kept in the ``x-amz-meta-sha256`` user metadata and
sent as ``ChecksumSHA256`` on writes so the service verifies it too.

Note:
    S3 requires every multipart part except the last to be at least 5 MiB.
    The driver advertises this as ``min_part_size``; a client that sends a
    smaller chunk and then keeps going is rejected at its next chunk.
"""

import base64
import logging
import tempfile

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..digest import DigestingReader
from .base import (
    BackendUnavailable,
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

_NOT_FOUND = ("404", "NoSuchKey", "NotFound")
_BAD_PART = ("InvalidPart", "InvalidPartOrder", "EntityTooSmall")

# Payloads above this size are spooled to disk before upload
_SPOOL_SIZE = 8 * 1024 * 1024


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class Storage(ObjectStore):
    """S3 storage backend for registry objects."""

    min_part_size = 5 * 1024 * 1024

    def __init__(self, config=None, bucket_name=None, client=None, ensure_bucket=True):
        self.config = config
        self.bucket_name = bucket_name or (config.S3_BUCKET if config else "objregistry")
        self._client = client
        if ensure_bucket:
            self._ensure_bucket_exists()

    @property
    def client(self):
        """Lazy initialization of S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=self.config.S3_ACCESS_KEY_ID,
                aws_secret_access_key=self.config.S3_SECRET_ACCESS_KEY,
                endpoint_url=self.config.S3_ENDPOINT_URL,
                region_name=self.config.S3_REGION,
            )
        return self._client

    def _call(self, operation, **kwargs):
        """Invoke a client operation on the bucket, mapping transport failures."""
        try:
            return getattr(self.client, operation)(Bucket=self.bucket_name, **kwargs)
        except BotoCoreError as e:
            logger.error(f"S3 {operation} failed: {e}")
            raise BackendUnavailable(f"S3 {operation} failed") from e

    def _ensure_bucket_exists(self):
        """Create bucket if it doesn't exist."""
        try:
            self._call("head_bucket")
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND:
                raise BackendUnavailable(f"Error accessing bucket {self.bucket_name}") from e
            try:
                self._call("create_bucket")
            except ClientError as create_error:
                raise BackendUnavailable(
                    f"Failed to create bucket {self.bucket_name}"
                ) from create_error
            logger.info(f"Created bucket {self.bucket_name}")

    def _info(self, key, response):
        return ObjectInfo(
            key=key,
            size=response["ContentLength"],
            checksum=response.get("Metadata", {}).get("sha256"),
            content_type=response.get("ContentType"),
            last_modified=response.get("LastModified"),
        )

    def head(self, key):
        try:
            response = self._call("head_object", Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND:
                return None
            raise BackendUnavailable(f"head {key} failed") from e
        return self._info(key, response)

    def get(self, key):
        try:
            response = self._call("get_object", Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND:
                return None
            raise BackendUnavailable(f"get {key} failed") from e
        return StoredObject(info=self._info(key, response), body=response["Body"])

    def put(self, key, stream, checksum=None, content_type=None):
        reader = DigestingReader(stream)
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_SIZE) as spool:
            while True:
                buf = reader.read(self.buffer_size)
                if not buf:
                    break
                spool.write(buf)
            actual = reader.hexdigest()
            if checksum is not None and checksum != actual:
                raise ChecksumMismatch(checksum, actual)
            spool.seek(0)
            kwargs = {
                "Key": key,
                "Body": spool,
                "Metadata": {"sha256": actual},
                "ChecksumSHA256": base64.b64encode(bytes.fromhex(actual)).decode("ascii"),
            }
            if content_type:
                kwargs["ContentType"] = content_type
            try:
                self._call("put_object", **kwargs)
            except ClientError as e:
                if _error_code(e) == "BadDigest":
                    raise ChecksumMismatch(actual, "<rejected by backend>") from e
                raise BackendUnavailable(f"put {key} failed") from e
        return ObjectInfo(key=key, size=reader.size, checksum=actual, content_type=content_type)

    def delete(self, key):
        try:
            self._call("delete_object", Key=key)
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND:
                raise BackendUnavailable(f"delete {key} failed") from e

    def list(self, prefix):
        keys = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise BackendUnavailable(f"list {prefix} failed") from e
        return sorted(keys)

    def create_multipart(self, key):
        try:
            response = self._call("create_multipart_upload", Key=key)
        except ClientError as e:
            raise BackendUnavailable(f"create multipart upload for {key} failed") from e
        logger.debug(f"Created multipart upload {response['UploadId']} for {key}")
        return response["UploadId"]

    def resume_multipart(self, key, upload_id):
        try:
            self._call("list_parts", Key=key, UploadId=upload_id, MaxParts=1)
        except ClientError as e:
            if _error_code(e) in ("NoSuchUpload", *_NOT_FOUND):
                raise UploadSessionUnknown(f"no upload {upload_id} for {key}") from e
            raise BackendUnavailable(f"list parts of {upload_id} failed") from e
        return _S3MultipartUpload(self, key, upload_id)

    def list_multipart_uploads(self, prefix=""):
        pending = []
        try:
            paginator = self.client.get_paginator("list_multipart_uploads")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for upload in page.get("Uploads", []):
                    pending.append(
                        PendingUpload(
                            key=upload["Key"],
                            upload_id=upload["UploadId"],
                            initiated=upload["Initiated"],
                        )
                    )
        except (BotoCoreError, ClientError) as e:
            raise BackendUnavailable("list multipart uploads failed") from e
        return pending


class _S3MultipartUpload(MultipartUpload):
    def __init__(self, store, key, upload_id):
        super().__init__(key, upload_id)
        self._store = store

    def _call(self, operation, **kwargs):
        try:
            return self._store._call(operation, Key=self.key, UploadId=self.upload_id, **kwargs)
        except ClientError as e:
            code = _error_code(e)
            if code == "NoSuchUpload":
                raise UploadSessionUnknown(f"upload {self.upload_id} no longer exists") from e
            if code in _BAD_PART:
                raise InvalidPart(f"{operation} rejected: {code}") from e
            raise BackendUnavailable(f"{operation} for {self.upload_id} failed") from e

    def append_part(self, part_number, stream):
        # Parts are bounded by the client's chunk size, so they are buffered
        data = stream.read()
        response = self._call("upload_part", PartNumber=part_number, Body=data)
        return UploadedPart(part_number=part_number, etag=response["ETag"], size=len(data))

    def complete(self, parts):
        self._call(
            "complete_multipart_upload",
            MultipartUpload={
                "Parts": [{"ETag": p.etag, "PartNumber": p.part_number} for p in parts]
            },
        )
        return self._store.head(self.key)

    def abort(self):
        try:
            self._call("abort_multipart_upload")
        except UploadSessionUnknown:
            pass
