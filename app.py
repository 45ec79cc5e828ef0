"""
OCI-compliant container registry backed by object storage.

This registry implements the OCI Distribution Specification v1.0 with backward
compatibility for Docker Registry v2 API. Blobs and manifests are stored in a
pluggable object store: the local filesystem, S3 (or any S3-compatible
service) or memory.

Architecture:
    1. Client starts an upload (POST /v2/<name>/blobs/uploads/)
    2. Registry opens a backend multipart upload and returns its state in
       the Location URL; nothing is kept server-side
    3. Client sends chunks (PATCH <Location>), each stored as one part
    4. Client finishes (PUT <Location>&digest=...); registry assembles the
       parts, verifies the digest and commits the blob
    5. Client pushes the manifest (PUT /v2/<name>/manifests/<tag>), stored
       under the tag and under its digest
    6. Pulls read manifests and blobs straight from the store

OCI Endpoints:
    - GET /v2/ - Version check
    - GET /v2/_catalog - List repositories
    - GET /v2/<name>/tags/list - List tags
    - GET/HEAD/PUT/DELETE /v2/<name>/manifests/<reference> - Manifests
    - GET/HEAD/DELETE /v2/<name>/blobs/<digest> - Blobs
    - POST /v2/<name>/blobs/uploads/ - Start upload (or mount)
    - GET/PATCH/PUT/DELETE /v2/<name>/blobs/uploads/<session> - Upload steps

Environment Variables:
    LOG_LEVEL, FLASK_HOST, FLASK_PORT, REGISTRY_SECRET, STORAGE_DRIVER,
    STORAGE_PATH, S3_BUCKET, S3_ENDPOINT_URL, S3_REGION, S3_ACCESS_KEY_ID,
    S3_SECRET_ACCESS_KEY, MAX_IMAGE_NAME_LENGTH, MAX_TAG_LENGTH,
    MAX_MANIFEST_SIZE, UPLOAD_MAX_AGE

Example:
    $ REGISTRY_SECRET=s3cret python app.py
    $ docker login localhost:5000 -u any -p s3cret
    $ docker push localhost:5000/library/alpine:latest
    $ flask --app app reap-uploads --max-age 3600
"""

import logging

from objregistry.config import config
from objregistry.routes import create_app

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("boto3").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

app = create_app(config)


def main():
    """Main entry point for the registry application."""
    debug_mode = logger.getEffectiveLevel() == logging.DEBUG
    logger.info(f"Starting container registry service on {config.FLASK_HOST}:{config.FLASK_PORT}")
    logger.info(f"Configuration: {config}")
    logger.info(f"Log level: {logging.getLevelName(logger.getEffectiveLevel())}")
    if debug_mode:
        logger.info("Flask debug mode enabled")
    app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=debug_mode, threaded=True)


if __name__ == "__main__":
    main()
