from datetime import timedelta

import pytest
from racereg.utils.auth import (
    TokenError,
    create_access_token,
    decode_access_token,
    generate_invite_token,
    hash_invite_token,
)

SECRET = "testsecret"


def test_access_token_round_trip() -> None:
    token = create_access_token(user_id=42, secret=SECRET)
    assert decode_access_token(token, secret=SECRET, algorithms=["HS256"]) == 42


def test_token_for_another_audience_is_rejected() -> None:
    token = create_access_token(user_id=42, secret=SECRET, audience="billing")
    with pytest.raises(TokenError):
        decode_access_token(token, secret=SECRET, algorithms=["HS256"])


def test_expired_and_forged_tokens_are_rejected() -> None:
    expired = create_access_token(user_id=42, secret=SECRET, expires_delta=timedelta(seconds=-1))
    forged = create_access_token(user_id=42, secret="other-secret")
    for token in (expired, forged):
        with pytest.raises(TokenError):
            decode_access_token(token, secret=SECRET, algorithms=["HS256"])


def test_invite_tokens_are_random_and_hashed() -> None:
    first, second = generate_invite_token(), generate_invite_token()

    assert first != second
    assert len(first) >= 43
    assert hash_invite_token(first) == hash_invite_token(first)
    assert hash_invite_token(first) != first
    assert len(hash_invite_token(first)) == 64
