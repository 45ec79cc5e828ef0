"""
Input validation module for the container registry.

Provides validation functions for repository names, tags, references and digests.
"""

import logging
import re

from .config import config
from .digest import DigestError, parse_digest
from .errors import ErrorCode, RegistryError

logger = logging.getLogger(__name__)

# OCI distribution name grammar: path components of lowercase alphanumerics
# joined by ".", "_", "__" or runs of "-".
_NAME_COMPONENT = r"[a-z0-9]+(?:(?:\.|_|__|-+)[a-z0-9]+)*"
_NAME_RE = re.compile(rf"^{_NAME_COMPONENT}(?:/{_NAME_COMPONENT})*$")
_TAG_RE = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9._-]*$")


def validate_image_name(name: str) -> None:
    """
    Validate a repository name.

    Args:
        name: Repository name to validate (e.g., "library/ubuntu")

    Raises:
        RegistryError: NAME_INVALID if the name is invalid

    Validation Rules:
        - Must be 1-{MAX_IMAGE_NAME_LENGTH} characters (configurable)
        - Slash-separated components of lowercase alphanumerics, each
          optionally joined by ".", "_", "__" or dashes
        - Components may not start or end with a separator, so reserved
          key segments such as "_uploads" can never be a repository name

    Examples:
        >>> validate_image_name("library/ubuntu")  # OK
        >>> validate_image_name("my-org/app.web")  # OK
        >>> validate_image_name("App")  # Raises NAME_INVALID (uppercase)
    """
    if not name or len(name) > config.MAX_IMAGE_NAME_LENGTH:
        logger.warning(f"Invalid image name length: {len(name or '')}")
        raise RegistryError(
            ErrorCode.NAME_INVALID,
            detail=f"name must be 1-{config.MAX_IMAGE_NAME_LENGTH} characters",
        )

    if not _NAME_RE.match(name):
        logger.warning(f"Invalid image name format: {name}")
        raise RegistryError(ErrorCode.NAME_INVALID, detail=f"invalid repository name: {name}")

    logger.debug(f"Image name validated: {name}")


def validate_tag(tag: str) -> None:
    """
    Validate container image tag.

    Args:
        tag: Tag name to validate

    Raises:
        RegistryError: TAG_INVALID if tag is invalid

    Validation Rules:
        - Must be 1-{MAX_TAG_LENGTH} characters (configurable)
        - Only alphanumeric characters, dots (.), hyphens (-), and underscores (_)
        - May not start with a dot or hyphen
    """
    if not tag or len(tag) > config.MAX_TAG_LENGTH:
        logger.warning(f"Invalid tag length: {len(tag or '')}")
        raise RegistryError(
            ErrorCode.TAG_INVALID, detail=f"tag must be 1-{config.MAX_TAG_LENGTH} characters"
        )

    if not _TAG_RE.match(tag):
        logger.warning(f"Invalid tag format: {tag}")
        raise RegistryError(ErrorCode.TAG_INVALID, detail=f"invalid tag: {tag}")

    logger.debug(f"Tag validated: {tag}")


def validate_digest(digest: str) -> None:
    """
    Validate SHA256 digest format per OCI specification.

    Args:
        digest: Digest string to validate

    Raises:
        RegistryError: DIGEST_INVALID if the digest is malformed or uses an
            unsupported algorithm

    Format:
        Must match: sha256:<64 lowercase hex characters>
    """
    try:
        parse_digest(digest)
    except DigestError as e:
        logger.warning(f"Invalid digest format: {digest}")
        raise RegistryError(ErrorCode.DIGEST_INVALID, detail=str(e)) from e

    logger.debug(f"Digest validated: {digest}")


def validate_reference(reference: str) -> None:
    """
    Validate a manifest reference, which is either a tag or a digest.

    Anything containing a colon is treated as a digest.
    """
    if reference and ":" in reference:
        validate_digest(reference)
    else:
        validate_tag(reference)
