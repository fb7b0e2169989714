"""Tests for JWT helpers and the current-user dependency."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from traininghub.config import TrainingHubConfig
from traininghub.dependencies import get_current_user
from traininghub.utils.security import create_access_token, decode_access_token

SECRET = "unit-test-secret"


class TestTokens:
    def test_round_trip(self):
        token = create_access_token({"sub": "user-1", "role": "admin"}, SECRET)
        payload = decode_access_token(token, SECRET)
        assert payload["sub"] == "user-1"
        assert payload["role"] == "admin"
        assert "exp" in payload

    def test_wrong_secret(self):
        token = create_access_token({"sub": "user-1"}, SECRET)
        assert decode_access_token(token, "other-secret") is None

    def test_expired_token(self):
        token = jwt.encode(
            {"sub": "user-1", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            SECRET,
            algorithm="HS256",
        )
        assert decode_access_token(token, SECRET) is None

    def test_garbage(self):
        assert decode_access_token("not.a.token", SECRET) is None


class TestGetCurrentUser:
    def _config(self):
        return TrainingHubConfig(secret_key=SECRET)

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(credentials=None, config=self._config())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_token(self):
        token = create_access_token({"sub": "user-1", "role": "super_admin"}, SECRET)
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
        user = await get_current_user(credentials=creds, config=self._config())
        assert user["role"] == "super_admin"

    @pytest.mark.asyncio
    async def test_token_without_subject(self):
        token = create_access_token({"role": "admin"}, SECRET)
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(credentials=creds, config=self._config())
        assert exc_info.value.status_code == 401
