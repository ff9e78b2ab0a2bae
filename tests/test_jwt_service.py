"""
Tests for access-token generation and verification (services/jwt_service.py).
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from reqflow.services.jwt_service import ALGORITHM, decode_access_token, generate_access_token


def _secret(app):
    return app.config.get("JWT_SECRET_KEY") or app.config["SECRET_KEY"]


class TestAccessToken:
    def test_round_trip(self):
        payload = decode_access_token(generate_access_token(7, 3))
        assert payload["sub"] == 7
        assert payload["org_id"] == 3
        assert payload["type"] == "access"
        assert payload["jti"]

    def test_sub_is_string_on_the_wire(self, app):
        token = generate_access_token(7, 3)
        raw = jwt.decode(token, _secret(app), algorithms=[ALGORITHM])
        assert raw["sub"] == "7"

    def test_wrong_secret(self):
        token = jwt.encode(
            {"sub": "7", "org_id": 3, "type": "access"}, "another-secret-of-sufficient-length!",
            algorithm=ALGORITHM,
        )
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)

    def test_expired(self, app):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": "7", "org_id": 3, "type": "access", "iat": past, "exp": past + timedelta(minutes=1)},
            _secret(app), algorithm=ALGORITHM,
        )
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_wrong_type(self, app):
        token = jwt.encode({"sub": "7", "org_id": 3, "type": "refresh"}, _secret(app), algorithm=ALGORITHM)
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)

    def test_missing_org(self, app):
        token = jwt.encode({"sub": "7", "type": "access"}, _secret(app), algorithm=ALGORITHM)
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)
