from datetime import timedelta

import pytest
from jose import jwt

from config import ALGORITHM, SECRET_KEY
from errors import InvalidCredentials, ValidationError
from schemas import Role
from security import create_access_token, decode_access_token, hash_password, verify_password
from tests.conftest import PASSWORD, PASSWORD_HASH


def test_hash_and_verify():
    assert PASSWORD_HASH.startswith("$2b$10$")
    assert verify_password(PASSWORD, PASSWORD_HASH)
    assert not verify_password("wrong-password", PASSWORD_HASH)
    assert not verify_password(PASSWORD, "not-a-hash")
    assert not verify_password(PASSWORD, None)


@pytest.mark.parametrize("password", ["", "12345", "x" * 73, "ş" * 37])
def test_password_policy(password):
    with pytest.raises(ValidationError):
        hash_password(password)


def test_token_round_trip():
    token = create_access_token("abc123", Role.COURIER)
    payload = decode_access_token(token)
    assert payload.subject_id == "abc123"
    assert payload.role == Role.COURIER


def test_expired_token():
    token = create_access_token("abc123", Role.OWNER, expires_delta=timedelta(seconds=-1))
    with pytest.raises(InvalidCredentials):
        decode_access_token(token)


def test_tampered_and_incomplete_tokens():
    with pytest.raises(InvalidCredentials):
        decode_access_token(create_access_token("abc123", Role.OWNER) + "x")
    with pytest.raises(InvalidCredentials):
        decode_access_token(jwt.encode({"sub": "abc123", "role": "superuser"}, SECRET_KEY, algorithm=ALGORITHM))
    with pytest.raises(InvalidCredentials):
        decode_access_token(jwt.encode({"role": "owner"}, SECRET_KEY, algorithm=ALGORITHM))
