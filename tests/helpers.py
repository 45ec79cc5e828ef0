import hashlib

from werkzeug.datastructures import Authorization


def basic_auth(password: str, user: str = "ci") -> str:
    return Authorization("basic", {"username": user, "password": password}).to_header()


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()
