"""Access-token verification: HS256 and RS256, tampered and expired tokens, subject parsing in the API dependency."""

import uuid
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from jose import JWTError, jwt

from accountability.api.deps import get_current_user_id
from accountability.config import settings
from accountability.core.auth import create_access_token, decode_token


def _request(authorization: str | None) -> MagicMock:
    request = MagicMock()
    request.headers = {"Authorization": authorization} if authorization is not None else {}
    return request


def test_create_and_decode_token_roundtrip_hs256():
    user_id = uuid.uuid4()
    token = create_access_token(user_id, "u@example.com")
    payload = decode_token(token)
    assert payload["sub"] == str(user_id)
    assert payload["email"] == "u@example.com"
    assert "exp" in payload


def test_decode_invalid_signature_raises():
    token = create_access_token(uuid.uuid4())
    bad_token = token[:-1] + ("x" if token[-1] != "x" else "y")
    with pytest.raises(JWTError):
        decode_token(bad_token)


def test_decode_expired_token_raises():
    payload = {"sub": str(uuid.uuid4()), "exp": datetime.now(timezone.utc) - timedelta(minutes=1)}
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    with pytest.raises(JWTError):
        decode_token(token if isinstance(token, str) else token.decode("utf-8"))


def test_decode_wrong_key_raises():
    token = create_access_token(uuid.uuid4())
    with patch.object(settings, "secret_key", "other-secret"):
        with pytest.raises(JWTError):
            decode_token(token)


def test_create_and_decode_token_roundtrip_rs256():
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    user_id = uuid.uuid4()
    with patch.object(settings, "jwt_private_key", private_pem), patch.object(settings, "jwt_public_key", public_pem):
        token = create_access_token(user_id)
        assert jwt.get_unverified_header(token)["alg"] == "RS256"
        assert decode_token(token)["sub"] == str(user_id)


@pytest.mark.asyncio
async def test_current_user_id_from_bearer_token():
    user_id = uuid.uuid4()
    token = create_access_token(user_id)
    assert await get_current_user_id(_request(f"Bearer {token}")) == user_id


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "Bearer garbage"])
async def test_current_user_id_rejects_missing_or_bad_header(header):
    with pytest.raises(HTTPException) as exc:
        await get_current_user_id(_request(header))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_current_user_id_rejects_non_uuid_subject():
    token = jwt.encode(
        {"sub": "42", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(HTTPException) as exc:
        await get_current_user_id(_request(f"Bearer {token}"))
    assert exc.value.status_code == 401
