import pytest
from werkzeug.datastructures import Authorization

from objregistry.auth import check_auth
from tests.helpers import basic_auth


def parsed(header):
    return Authorization.from_header(header)


def test_disabled_without_secret():
    assert check_auth(None, None)
    assert check_auth(parsed("Bearer token"), None)


@pytest.mark.parametrize("user", ["ci", "", "docker"])
def test_any_username_with_right_password(user):
    assert check_auth(parsed(basic_auth("s3cret", user=user)), "s3cret")


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "Bearer token",
        "Basic",
        "Basic !!!not-base64!!!",
        "Basic " + "bm9jb2xvbg==",  # "nocolon"
        basic_auth("wrong"),
        basic_auth("s3cret "),
    ],
)
def test_rejected(header):
    assert not check_auth(parsed(header), "s3cret")


def test_scheme_is_case_insensitive():
    assert check_auth(parsed(basic_auth("s3cret").replace("Basic", "basic")), "s3cret")
