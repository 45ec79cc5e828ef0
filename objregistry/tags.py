"""Tag and repository listings derived from stored manifest keys."""

import logging

from .digest import is_digest
from .errors import ErrorCode, RegistryError
from .manifests import manifest_key

logger = logging.getLogger(__name__)

_MANIFESTS_SEGMENT = "/manifests/"


def _paginate(items, n=None, last=None):
    if last:
        items = [item for item in items if item > last]
    if n is not None:
        items = items[:n]
    return items


def list_tags(store, name: str, n: int | None = None, last: str | None = None) -> list[str]:
    """
    List the tags of a repository.

    Every key directly under ``{name}/manifests/`` contributes its reference;
    digest-keyed copies are dropped and the rest sorted.

    Args:
        n: Return at most this many tags.
        last: Return only tags sorting after this one.

    Raises:
        RegistryError: NAME_UNKNOWN if the repository holds no manifests.
    """
    prefix = manifest_key(name, "")
    # Keys of nested repositories such as {name}/manifests/x share the prefix
    references = [
        key[len(prefix):] for key in store.list(prefix) if "/" not in key[len(prefix):]
    ]
    if not references:
        raise RegistryError(ErrorCode.NAME_UNKNOWN, detail={"name": name})
    tags = sorted(reference for reference in references if not is_digest(reference))
    logger.debug(f"Tags for {name}: {len(tags)}")
    return _paginate(tags, n, last)


def list_repositories(store, n: int | None = None, last: str | None = None) -> list[str]:
    """List every repository that holds at least one manifest."""
    names = set()
    for key in store.list(""):
        name, sep, reference = key.rpartition(_MANIFESTS_SEGMENT)
        if sep and name and "/" not in reference:
            names.add(name)
    return _paginate(sorted(names), n, last)
