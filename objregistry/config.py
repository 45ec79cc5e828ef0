"""
Configuration module for the container registry.

Loads all configuration from environment variables with sensible defaults.
"""

import os


class Config:
    """
    Registry configuration from environment variables.

    Loads all configuration values from environment variables with sensible defaults.
    All settings can be overridden by setting the corresponding environment variable.
    """

    def __init__(self):
        """
        Initialize configuration from environment variables.

        Environment Variables:
            LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO
            FLASK_HOST: Server bind address. Default: 0.0.0.0
            FLASK_PORT: Server bind port. Default: 5000
            REGISTRY_SECRET: Shared secret expected as the Basic auth password.
                Default: unset (authentication disabled)
            STORAGE_DRIVER: Object store driver (memory, filesystem, s3). Default: filesystem
            STORAGE_PATH: Root directory of the filesystem driver. Default: ./data
            S3_BUCKET: Bucket used by the s3 driver. Default: objregistry
            S3_ENDPOINT_URL: Endpoint of an S3-compatible service. Default: unset (AWS)
            S3_REGION: Region of the bucket. Default: unset
            S3_ACCESS_KEY_ID, S3_SECRET_ACCESS_KEY: Credentials. Default: unset
                (boto3 credential chain)
            MAX_IMAGE_NAME_LENGTH: Maximum repository name length. Default: 255
            MAX_TAG_LENGTH: Maximum tag length. Default: 128
            MAX_MANIFEST_SIZE: Maximum manifest body size in bytes. Default: 4194304
            UPLOAD_MAX_AGE: Age in seconds after which pending uploads are reaped.
                Default: 86400
        """
        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Server
        self.FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
        self.FLASK_PORT = int(os.getenv("FLASK_PORT", "5000"))

        # Authentication
        self.REGISTRY_SECRET = os.getenv("REGISTRY_SECRET") or None

        # Storage
        self.STORAGE_DRIVER = os.getenv("STORAGE_DRIVER", "filesystem")
        self.STORAGE_PATH = os.getenv("STORAGE_PATH", "./data")
        self.S3_BUCKET = os.getenv("S3_BUCKET", "objregistry")
        self.S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None
        self.S3_REGION = os.getenv("S3_REGION") or None
        self.S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID") or None
        self.S3_SECRET_ACCESS_KEY = os.getenv("S3_SECRET_ACCESS_KEY") or None

        # Validation limits
        self.MAX_IMAGE_NAME_LENGTH = int(os.getenv("MAX_IMAGE_NAME_LENGTH", "255"))
        self.MAX_TAG_LENGTH = int(os.getenv("MAX_TAG_LENGTH", "128"))
        self.MAX_MANIFEST_SIZE = int(os.getenv("MAX_MANIFEST_SIZE", str(4 * 1024 * 1024)))

        # Uploads
        self.UPLOAD_MAX_AGE = int(os.getenv("UPLOAD_MAX_AGE", "86400"))  # seconds

    def __repr__(self):
        """String representation for logging. Secrets are never included."""
        return (
            f"Config(LOG_LEVEL={self.LOG_LEVEL}, "
            f"FLASK_HOST={self.FLASK_HOST}, "
            f"FLASK_PORT={self.FLASK_PORT}, "
            f"STORAGE_DRIVER={self.STORAGE_DRIVER}, "
            f"AUTH={'enabled' if self.REGISTRY_SECRET else 'disabled'})"
        )


# Global config instance
config = Config()
