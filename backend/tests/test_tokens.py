import pytest

from errors import Unauthorized
from models import User
from tokens import decode_token, extract_bearer, issue_token, jwt_secret


def test_extract_bearer():
    assert extract_bearer("Bearer abc.def.ghi") == "abc.def.ghi"
    assert extract_bearer("bearer abc") == "abc"
    assert extract_bearer("abc") is None
    assert extract_bearer("Basic abc") is None
    assert extract_bearer(None) is None


def test_token_carries_user_id():
    token = issue_token(User(id=7, email="ana.pop@devhub.tech", is_admin=False))
    assert decode_token(token) == 7


def test_token_signed_with_other_secret_rejected(monkeypatch):
    token = issue_token(User(id=7, email="ana.pop@devhub.tech"))
    monkeypatch.setenv("JWT_SECRET", "another-signing-secret-for-a-different-deployment")

    with pytest.raises(Unauthorized):
        decode_token(token)


def test_production_requires_secret(monkeypatch):
    monkeypatch.delenv("JWT_SECRET")
    monkeypatch.setenv("ENV", "production")

    with pytest.raises(RuntimeError):
        jwt_secret()
