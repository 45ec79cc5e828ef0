import io

import pytest

from objregistry.errors import ErrorCode, RegistryError
from objregistry.manifests import (
    DEFAULT_MANIFEST_TYPE,
    delete_manifest,
    get_manifest,
    head_manifest,
    manifest_digest,
    put_manifest,
)
from objregistry.tags import list_repositories, list_tags
from tests.helpers import sha256_digest

NAME = "library/app"
MANIFEST = b'{"schemaVersion":2,"mediaType":"application/vnd.oci.image.manifest.v1+json","layers":[]}'
OCI_TYPE = "application/vnd.oci.image.manifest.v1+json"


def test_put_writes_tag_and_digest_copies(store):
    digest = put_manifest(store, NAME, "latest", io.BytesIO(MANIFEST), content_type=OCI_TYPE)

    assert digest == sha256_digest(MANIFEST)
    by_tag = get_manifest(store, NAME, "latest")
    by_digest = get_manifest(store, NAME, digest)
    assert by_tag.read() == by_digest.read() == MANIFEST
    assert by_tag.info.content_type == OCI_TYPE
    assert manifest_digest(by_digest.info, digest) == digest


def test_put_defaults_content_type(store):
    put_manifest(store, NAME, "latest", io.BytesIO(MANIFEST))
    assert head_manifest(store, NAME, "latest").content_type == DEFAULT_MANIFEST_TYPE


def test_put_by_digest(store):
    digest = sha256_digest(MANIFEST)
    assert put_manifest(store, NAME, digest, io.BytesIO(MANIFEST)) == digest
    assert store.list(f"{NAME}/manifests/") == [f"{NAME}/manifests/{digest}"]


def test_put_by_wrong_digest(store):
    wrong = sha256_digest(b"something else")
    with pytest.raises(RegistryError) as exc_info:
        put_manifest(store, NAME, wrong, io.BytesIO(MANIFEST))
    assert exc_info.value.code is ErrorCode.DIGEST_INVALID
    assert store.list(f"{NAME}/manifests/") == []


@pytest.mark.parametrize("body", [None, io.BytesIO(b"")])
def test_put_requires_body(store, body):
    with pytest.raises(RegistryError) as exc_info:
        put_manifest(store, NAME, "latest", body)
    assert exc_info.value.code is ErrorCode.MANIFEST_INVALID


def test_put_rejects_oversized(store):
    with pytest.raises(RegistryError) as exc_info:
        put_manifest(store, NAME, "latest", io.BytesIO(b"x" * 101), max_size=100)
    assert exc_info.value.code is ErrorCode.MANIFEST_INVALID
    assert store.list(NAME) == []


def test_missing_manifest(store):
    with pytest.raises(RegistryError) as exc_info:
        head_manifest(store, NAME, "latest")
    assert exc_info.value.code is ErrorCode.MANIFEST_UNKNOWN


def test_delete_keeps_digest_copy(store):
    digest = put_manifest(store, NAME, "latest", io.BytesIO(MANIFEST))
    delete_manifest(store, NAME, "latest")
    delete_manifest(store, NAME, "latest")

    with pytest.raises(RegistryError):
        head_manifest(store, NAME, "latest")
    assert get_manifest(store, NAME, digest).read() == MANIFEST


def test_list_tags_filters_digest_keys(store):
    put_manifest(store, NAME, "v2", io.BytesIO(MANIFEST))
    put_manifest(store, NAME, "latest", io.BytesIO(MANIFEST + b" "))

    assert list_tags(store, NAME) == ["latest", "v2"]
    assert list_tags(store, NAME, n=1) == ["latest"]
    assert list_tags(store, NAME, last="latest") == ["v2"]


def test_list_tags_only_digests(store):
    put_manifest(store, NAME, sha256_digest(MANIFEST), io.BytesIO(MANIFEST))
    assert list_tags(store, NAME) == []


def test_list_tags_unknown_repository(store):
    with pytest.raises(RegistryError) as exc_info:
        list_tags(store, "nothing/here")
    assert exc_info.value.code is ErrorCode.NAME_UNKNOWN


def test_list_tags_ignores_nested_repositories(store):
    put_manifest(store, "app", "latest", io.BytesIO(MANIFEST))
    put_manifest(store, "app/sub", "v1", io.BytesIO(MANIFEST))
    assert list_tags(store, "app") == ["latest"]


def test_list_repositories(store):
    put_manifest(store, "b/app", "latest", io.BytesIO(MANIFEST))
    put_manifest(store, "a", "latest", io.BytesIO(MANIFEST))
    store.put("c/blobs/sha256:" + "0" * 64, io.BytesIO(b"orphan layer"))

    assert list_repositories(store) == ["a", "b/app"]
    assert list_repositories(store, n=1) == ["a"]
    assert list_repositories(store, last="a") == ["b/app"]


def test_list_tags_ignores_repositories_named_after_manifests(store):
    put_manifest(store, "app", "latest", io.BytesIO(MANIFEST))
    put_manifest(store, "app/manifests/v1", "ghost", io.BytesIO(MANIFEST))

    assert list_tags(store, "app") == ["latest"]
    assert list_tags(store, "app/manifests/v1") == ["ghost"]
    assert list_repositories(store) == ["app", "app/manifests/v1"]


def test_list_tags_only_nested_repository(store):
    put_manifest(store, "app/manifests/v1", "ghost", io.BytesIO(MANIFEST))
    with pytest.raises(RegistryError) as exc_info:
        list_tags(store, "app")
    assert exc_info.value.code is ErrorCode.NAME_UNKNOWN
