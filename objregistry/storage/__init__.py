"""
Object storage drivers.

Use ``fetch(name)`` to get a driver class and instantiate it with the
registry configuration:

    >>> store = fetch("filesystem")(config=config)
"""

import importlib
import logging
import pkgutil

from .base import (
    BackendUnavailable,
    ChecksumMismatch,
    InvalidPart,
    MultipartUpload,
    ObjectInfo,
    ObjectStore,
    PendingUpload,
    StorageError,
    StoredObject,
    UploadedPart,
    UploadSessionUnknown,
)

logger = logging.getLogger(__name__)

__all__ = [
    "BackendUnavailable",
    "ChecksumMismatch",
    "InvalidPart",
    "MultipartUpload",
    "ObjectInfo",
    "ObjectStore",
    "PendingUpload",
    "StorageError",
    "StoredObject",
    "UploadedPart",
    "UploadSessionUnknown",
    "available",
    "fetch",
]

_NOT_DRIVERS = {"base"}


def available():
    """Names of the drivers shipped with this package."""
    return sorted(
        name for _, name, _ in pkgutil.iter_modules(__path__) if name not in _NOT_DRIVERS
    )


def fetch(name):
    """
    Return the ``Storage`` class of the named driver.

    Raises:
        ValueError: No driver with this name exists.
    """
    if name not in available():
        raise ValueError(
            f"Unknown storage driver {name!r}. Available drivers: {', '.join(available())}"
        )
    module = importlib.import_module(f"{__name__}.{name}")
    logger.debug(f"Using storage driver {module.__name__}.Storage")
    return module.Storage
