from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from app.errors import ApiError
from app.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive


def _cfg(**overrides) -> JwtSecurityConfig:
    cfg = JwtSecurityConfig.from_env(
        {
            "JWT_SHARED_SECRET": "s3cret",
            "JWT_ISSUER": "cre.test",
            "JWT_AUDIENCE": "cre.api",
        }
    )
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def _token(**claims) -> str:
    now = datetime.now(UTC)
    payload = {
        "iss": "cre.test",
        "aud": ["cre.api", "other"],
        "sub": "reviewer_1",
        "exp": int((now + timedelta(minutes=5)).timestamp()),
    }
    payload.update(claims)
    return jwt.encode(payload, "s3cret", algorithm="HS256")


def test_config_is_disabled_without_jwt_settings():
    cfg = JwtSecurityConfig.from_env({})
    assert cfg.enabled is False
    assert cfg.required_claims == ["sub", "exp"]


def test_valid_token_yields_subject():
    ctx = parse_and_validate_bearer_token(authorization=f"Bearer {_token()}", cfg=_cfg())
    assert ctx.subject == "reviewer_1"
    assert ctx.claims["iss"] == "cre.test"


@pytest.mark.parametrize(
    "authorization,message",
    [
        (None, "missing Authorization bearer token"),
        ("Token abc", "invalid Authorization header"),
        ("Bearer a.b", "invalid token format"),
    ],
)
def test_malformed_authorization_is_rejected(authorization, message):
    with pytest.raises(ApiError, match=message):
        parse_and_validate_bearer_token(authorization=authorization, cfg=_cfg())


def test_claim_checks():
    with pytest.raises(ApiError, match="issuer mismatch"):
        parse_and_validate_bearer_token(authorization=f"Bearer {_token(iss='elsewhere')}", cfg=_cfg())
    with pytest.raises(ApiError, match="audience mismatch"):
        parse_and_validate_bearer_token(authorization=f"Bearer {_token(aud='other')}", cfg=_cfg())
    with pytest.raises(ApiError, match="missing required claim: role"):
        parse_and_validate_bearer_token(
            authorization=f"Bearer {_token()}",
            cfg=_cfg(required_claims=["sub", "exp", "role"]),
        )


def test_redact_sensitive_masks_credentials():
    redacted = redact_sensitive({"Authorization": "Bearer abc", "nested": [{"password": "pw"}], "x-trace-id": "t1"})
    assert redacted == {
        "Authorization": "***REDACTED***",
        "nested": [{"password": "***REDACTED***"}],
        "x-trace-id": "t1",
    }
