"""
Shared-secret authentication.

Clients authenticate with HTTP Basic credentials whose password is the
configured registry secret; the username is ignored, so
``docker login -u anything -p $REGISTRY_SECRET`` works.
"""

import hmac
import logging

logger = logging.getLogger(__name__)

CHALLENGE = 'Basic realm="objregistry"'


def check_auth(authorization, secret: str | None) -> bool:
    """
    Check request credentials against the shared secret.

    Args:
        authorization: Parsed Authorization header
            (``werkzeug.datastructures.Authorization``), or None.
        secret: Configured secret. None disables authentication.

    Returns:
        True if the request may proceed.
    """
    if secret is None:
        return True
    if authorization is None or authorization.type != "basic" or authorization.password is None:
        logger.debug("Missing or malformed Basic credentials")
        return False
    return hmac.compare_digest(authorization.password.encode("utf-8"), secret.encode("utf-8"))
