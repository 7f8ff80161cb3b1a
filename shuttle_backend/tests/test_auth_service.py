"""
Unit tests for access token verification.
"""

from datetime import datetime, timedelta

import pytz
from jose import jwt

from shuttle_backend.services import auth_service


def _token(secret=None, **claims):
    payload = {
        "sub": "user-1",
        "aud": "authenticated",
        "exp": datetime.now(pytz.UTC) + timedelta(minutes=5),
    }
    payload.update(claims)
    return jwt.encode(payload, secret or auth_service.JWT_SECRET, algorithm="HS256")


def test_valid_token_returns_payload():
    payload = auth_service.verify_token(_token())
    assert payload["sub"] == "user-1"


def test_wrong_signature_rejected():
    assert auth_service.verify_token(_token(secret="other-secret")) is None


def test_expired_token_rejected():
    expired = _token(exp=datetime.now(pytz.UTC) - timedelta(minutes=1))
    assert auth_service.verify_token(expired) is None


def test_wrong_audience_rejected():
    assert auth_service.verify_token(_token(aud="anon")) is None


def test_garbage_rejected():
    assert auth_service.verify_token("not-a-jwt") is None
