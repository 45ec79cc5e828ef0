"""
Flask application and OCI registry endpoints.

Implements the pull, push and delete endpoints of the OCI Distribution
Specification / Docker Registry v2 API on top of an object store.
"""

import logging
from datetime import timedelta

import click
from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask.cli import with_appcontext
from werkzeug.exceptions import HTTPException, MethodNotAllowed

from .auth import CHALLENGE, check_auth
from .blobs import BLOB_CONTENT_TYPE, delete_blob, get_blob, head_blob, mount_blob
from .config import config as default_config
from .digest import CHUNK_SIZE
from .errors import ErrorCode, RegistryError
from .manifests import (
    DEFAULT_MANIFEST_TYPE,
    delete_manifest,
    get_manifest,
    head_manifest,
    manifest_digest,
    put_manifest,
)
from .storage import BackendUnavailable, InvalidPart, StorageError, UploadSessionUnknown, fetch
from .tags import list_repositories, list_tags
from .uploads import (
    STATE_PARAM,
    BlobUploader,
    UploadSession,
    parse_content_range,
    reap_stale_uploads,
)
from .validation import validate_digest, validate_image_name, validate_reference

logger = logging.getLogger(__name__)

API_VERSION_HEADER = "Docker-Distribution-API-Version"
API_VERSION = "registry/2.0"
EXTENSION_KEY = "objregistry"

bp = Blueprint("registry", __name__)


# -------------------------------
# Helpers
# -------------------------------


def _state():
    return current_app.extensions[EXTENSION_KEY]


def _store():
    return _state()["store"]


def _request_body():
    """Return the request body stream, or None if the request carries none."""
    chunked = "chunked" in request.headers.get("Transfer-Encoding", "").lower()
    if request.content_length or chunked:
        return request.stream
    return None


def _iter_body(body):
    try:
        while True:
            buf = body.read(CHUNK_SIZE)
            if not buf:
                break
            yield buf
    finally:
        body.close()


def _upload_response(name, session, status):
    resp = Response(status=status)
    resp.headers["Location"] = session.location(name)
    resp.headers["Docker-Upload-UUID"] = session.session_id
    resp.headers["Range"] = session.range_header
    resp.headers["Content-Length"] = "0"
    return resp


def _blob_created_response(name, digest):
    resp = Response(status=201)
    resp.headers["Location"] = f"/v2/{name}/blobs/{digest}"
    resp.headers["Docker-Content-Digest"] = digest
    resp.headers["Content-Length"] = "0"
    return resp


def _load_session(session_id):
    return UploadSession.from_token(session_id, request.args.get(STATE_PARAM))


# -------------------------------
# Request hooks and error handlers
# -------------------------------


def _authenticate():
    if not check_auth(request.authorization, _state()["config"].REGISTRY_SECRET):
        logger.warning(f"Unauthorized request: {request.method} {request.path}")
        raise RegistryError(ErrorCode.UNAUTHORIZED)


def _add_version_header(response):
    response.headers[API_VERSION_HEADER] = API_VERSION
    return response


def _error_response(error):
    resp = jsonify({"errors": [error.to_dict()]})
    resp.status_code = error.status
    if error.status == 401:
        resp.headers["WWW-Authenticate"] = CHALLENGE
    return resp


def _handle_registry_error(error):
    logger.debug(f"Request failed: {request.method} {request.path}: {error}")
    return _error_response(error)


def _handle_storage_error(error):
    if isinstance(error, UploadSessionUnknown):
        return _error_response(RegistryError(ErrorCode.BLOB_UPLOAD_UNKNOWN))
    if isinstance(error, InvalidPart):
        return _error_response(RegistryError(ErrorCode.BLOB_UPLOAD_INVALID))
    # Backend detail stays in the log
    logger.exception(f"Storage failure: {request.method} {request.path}")
    return Response(status=503 if isinstance(error, BackendUnavailable) else 500)


def _handle_http_error(error):
    if isinstance(error, MethodNotAllowed):
        return _error_response(RegistryError(ErrorCode.UNSUPPORTED, detail=request.method))
    return error


# -------------------------------
# Registry Endpoints
# -------------------------------


@bp.route("/v2/")
def v2_root():
    """
    OCI Distribution API version check endpoint.

    Returns HTTP 200 to indicate the registry supports the OCI Distribution
    Specification / Docker Registry v2 API. Clients probe this endpoint
    before pushing or pulling, and use a 401 from it to trigger login.

    Headers:
        Docker-Distribution-API-Version: registry/2.0
    """
    logger.info("Registry v2 API root accessed")
    return Response(status=200)


@bp.route("/v2/_catalog")
def catalog():
    """
    List repositories that hold at least one manifest.

    Query Parameters:
        n: Maximum number of entries to return.
        last: Return only repositories sorting after this one.

    Returns:
        JSON: {"repositories": [...]}
    """
    repositories = list_repositories(
        _store(), n=request.args.get("n", type=int), last=request.args.get("last")
    )
    logger.info(f"Catalog listed: {len(repositories)} repositories")
    return jsonify({"repositories": repositories})


@bp.route("/v2/<path:name>/tags/list")
def tags_list(name):
    """
    List the tags of a repository.

    Query Parameters:
        n: Maximum number of tags to return.
        last: Return only tags sorting after this one.

    Returns:
        JSON: {"name": "<name>", "tags": ["latest", "v1.0", ...]}

    Raises:
        400 NAME_INVALID: Malformed repository name
        404 NAME_UNKNOWN: Repository holds no manifests
    """
    validate_image_name(name)
    tags = list_tags(_store(), name, n=request.args.get("n", type=int), last=request.args.get("last"))
    logger.info(f"Tags listed: image='{name}', count={len(tags)}")
    return jsonify({"name": name, "tags": tags})


@bp.route("/v2/<path:name>/manifests/<reference>", methods=["GET", "HEAD"])
def get_manifest_route(name, reference):
    """
    Get or check a manifest by tag or digest.

    Methods:
        GET: Returns the manifest exactly as it was pushed
        HEAD: Returns only headers

    Response Headers:
        Content-Type: Media type recorded at push time
        Content-Length: Size of manifest in bytes
        Docker-Content-Digest: SHA256 digest of manifest

    Raises:
        400 NAME_INVALID / TAG_INVALID / DIGEST_INVALID: Malformed input
        404 MANIFEST_UNKNOWN: No manifest under this reference
    """
    validate_image_name(name)
    validate_reference(reference)

    logger.info(f"Manifest requested: image='{name}', reference='{reference}', method={request.method}")

    store = _store()
    if request.method == "HEAD":
        info = head_manifest(store, name, reference)
        resp = Response(status=200)
    else:
        obj = get_manifest(store, name, reference)
        info = obj.info
        resp = Response(_iter_body(obj.body), status=200)

    resp.headers["Content-Type"] = info.content_type or DEFAULT_MANIFEST_TYPE
    resp.headers["Content-Length"] = str(info.size)
    digest = manifest_digest(info, reference)
    if digest:
        resp.headers["Docker-Content-Digest"] = digest
    return resp


@bp.route("/v2/<path:name>/manifests/<reference>", methods=["PUT"])
def put_manifest_route(name, reference):
    """
    Push a manifest.

    The manifest is stored under the reference and under its computed
    digest, so it can be pulled by either.

    Request Headers:
        Content-Type: Manifest media type, recorded and served back on pull

    Response Headers:
        Location: /v2/<name>/manifests/<reference>
        Docker-Content-Digest: SHA256 digest of the manifest

    Raises:
        400 MANIFEST_INVALID: Missing, empty or oversized body
        400 DIGEST_INVALID: Pushed to a digest the content does not match
    """
    validate_image_name(name)
    validate_reference(reference)

    digest = put_manifest(
        _store(),
        name,
        reference,
        _request_body(),
        content_type=request.headers.get("Content-Type"),
        max_size=_state()["config"].MAX_MANIFEST_SIZE,
    )
    resp = Response(status=201)
    resp.headers["Location"] = f"/v2/{name}/manifests/{reference}"
    resp.headers["Docker-Content-Digest"] = digest
    resp.headers["Content-Length"] = "0"
    return resp


@bp.route("/v2/<path:name>/manifests/<reference>", methods=["DELETE"])
def delete_manifest_route(name, reference):
    """
    Delete a manifest reference.

    Only the reference copy is removed; the digest-addressed copy stays so
    other tags pointing at the same digest keep working. Deleting a missing
    manifest also returns 202.
    """
    validate_image_name(name)
    validate_reference(reference)
    delete_manifest(_store(), name, reference)
    return Response(status=202)


@bp.route("/v2/<path:name>/blobs/<digest>", methods=["GET", "HEAD"])
def get_blob_route(name, digest):
    """
    Get or check a blob (config or layer) by digest.

    Methods:
        GET: Streams the blob content
        HEAD: Returns only headers

    Response Headers:
        Content-Type: application/octet-stream
        Content-Length: Size of blob in bytes
        Docker-Content-Digest: SHA256 digest of the blob

    Raises:
        400 NAME_INVALID / DIGEST_INVALID: Malformed input
        404 BLOB_UNKNOWN: Blob not in this repository
    """
    validate_image_name(name)
    validate_digest(digest)

    logger.info(f"Blob requested: image='{name}', digest='{digest}', method={request.method}")

    store = _store()
    if request.method == "HEAD":
        info = head_blob(store, name, digest)
        resp = Response(status=200)
    else:
        obj = get_blob(store, name, digest)
        info = obj.info
        resp = Response(_iter_body(obj.body), status=200)

    resp.headers["Content-Type"] = info.content_type or BLOB_CONTENT_TYPE
    resp.headers["Content-Length"] = str(info.size)
    resp.headers["Docker-Content-Digest"] = f"sha256:{info.checksum}" if info.checksum else digest
    return resp


@bp.route("/v2/<path:name>/blobs/<digest>", methods=["DELETE"])
def delete_blob_route(name, digest):
    """Delete a blob. Deleting a missing blob also returns 202."""
    validate_image_name(name)
    validate_digest(digest)
    delete_blob(_store(), name, digest)
    return Response(status=202)


@bp.route("/v2/<path:name>/blobs/uploads/", methods=["POST"], strict_slashes=False)
def initiate_upload(name):
    """
    Start a blob upload.

    Query Parameters:
        mount, from: Mount blob <mount> from repository <from>. Returns 201
            when the source holds it, otherwise starts a normal upload.
        digest: Single-request upload; the body is committed immediately.

    A request body, if present, is stored as the first chunk.

    Response Headers (202):
        Location: URL for the next PATCH/PUT, carrying the upload state
        Docker-Upload-UUID: Upload session id
        Range: Bytes received so far
    """
    validate_image_name(name)
    store = _store()

    mount, from_name = request.args.get("mount"), request.args.get("from")
    if mount and from_name:
        validate_digest(mount)
        validate_image_name(from_name)
        if mount_blob(store, name, from_name, mount):
            return _blob_created_response(name, mount)

    digest = request.args.get("digest")
    if digest:
        validate_digest(digest)

    uploader = BlobUploader(store)
    session = uploader.initiate(name, _request_body())

    if digest:
        uploader.finalize(name, session, None, digest)
        return _blob_created_response(name, digest)

    return _upload_response(name, session, 202)


@bp.route("/v2/<path:name>/blobs/uploads/<session_id>", methods=["GET"])
def upload_status(name, session_id):
    """Report how many bytes an upload has received (204 with Range)."""
    validate_image_name(name)
    session = BlobUploader(_store()).status(name, _load_session(session_id))
    return _upload_response(name, session, 204)


@bp.route("/v2/<path:name>/blobs/uploads/<session_id>", methods=["PATCH"])
def upload_chunk(name, session_id):
    """
    Append a chunk to an upload.

    Request Headers:
        Content-Range: <start>-<end>; <start> must equal the bytes received
            so far. Absent means 0.

    Raises:
        416 SIZE_INVALID: Content-Range does not continue the upload
        404 BLOB_UPLOAD_UNKNOWN: Upload was aborted or never existed
    """
    validate_image_name(name)
    session = _load_session(session_id)
    start = parse_content_range(request.headers.get("Content-Range"))
    session = BlobUploader(_store()).append_chunk(name, session, _request_body(), start)
    return _upload_response(name, session, 202)


@bp.route("/v2/<path:name>/blobs/uploads/<session_id>", methods=["PUT"])
def complete_upload(name, session_id):
    """
    Finish an upload, optionally sending the last chunk in the body.

    Query Parameters:
        digest: Digest of the complete blob (required)

    Response Headers:
        Location: /v2/<name>/blobs/<digest>
        Docker-Content-Digest: <digest>

    Raises:
        400 DIGEST_INVALID: Missing digest or content does not match it
        400 SIZE_INVALID: Nothing was uploaded
    """
    validate_image_name(name)
    session = _load_session(session_id)
    digest = request.args.get("digest")
    if not digest:
        raise RegistryError(ErrorCode.DIGEST_INVALID, detail="digest query parameter is required")
    BlobUploader(_store()).finalize(name, session, _request_body(), digest)
    return _blob_created_response(name, digest)


@bp.route("/v2/<path:name>/blobs/uploads/<session_id>", methods=["DELETE"])
def cancel_upload(name, session_id):
    """Abort an upload and release its backend resources."""
    validate_image_name(name)
    BlobUploader(_store()).abort(name, _load_session(session_id))
    return Response(status=204)


# -------------------------------
# CLI
# -------------------------------


@click.command("reap-uploads")
@click.option("--max-age", type=int, default=None, help="Age in seconds; defaults to UPLOAD_MAX_AGE.")
@with_appcontext
def reap_uploads_command(max_age):
    """Abort upload sessions abandoned by their clients."""
    state = _state()
    seconds = max_age if max_age is not None else state["config"].UPLOAD_MAX_AGE
    reaped = reap_stale_uploads(state["store"], timedelta(seconds=seconds))
    click.echo(f"Reaped {reaped} stale upload(s)")


# -------------------------------
# Application factory
# -------------------------------


def create_app(cfg=None, store=None):
    """
    Build the registry Flask application.

    Args:
        cfg: Configuration; defaults to the environment-derived global config.
        store: Object store; defaults to the driver named by STORAGE_DRIVER.
    """
    cfg = cfg or default_config
    if store is None:
        store = fetch(cfg.STORAGE_DRIVER)(config=cfg)
    if cfg.REGISTRY_SECRET is None:
        logger.warning("REGISTRY_SECRET is not set, authentication is disabled")

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = {"config": cfg, "store": store}

    app.before_request(_authenticate)
    app.after_request(_add_version_header)
    app.register_error_handler(RegistryError, _handle_registry_error)
    app.register_error_handler(StorageError, _handle_storage_error)
    app.register_error_handler(HTTPException, _handle_http_error)
    app.register_blueprint(bp)
    app.cli.add_command(reap_uploads_command)
    return app
