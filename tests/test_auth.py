import base64

import pytest
from fastapi import HTTPException

from toolchat.auth import require_api_key
from toolchat.settings import settings


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


@pytest.mark.asyncio
async def test_require_api_key_uses_configured_token(monkeypatch):
    monkeypatch.setattr(settings, "api_auth_token", "custom-secret", raising=False)
    authorization = f"Bearer {_encode('custom-secret')}"

    token = await require_api_key(authorization=authorization, x_api_key=None)

    assert token == "custom-secret"


@pytest.mark.asyncio
async def test_x_api_key_header_is_accepted(monkeypatch):
    monkeypatch.setattr(settings, "api_auth_token", "custom-secret", raising=False)
    token = await require_api_key(authorization=None, x_api_key=_encode("custom-secret"))
    assert token == "custom-secret"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "authorization,x_api_key",
    [
        (None, None),
        ("Basic abc", None),
        ("Bearer not-base64!!", None),
        (f"Bearer {_encode('wrong')}", None),
        (None, _encode("wrong")),
    ],
)
async def test_invalid_credentials_are_rejected(monkeypatch, authorization, x_api_key):
    monkeypatch.setattr(settings, "api_auth_token", "custom-secret", raising=False)
    with pytest.raises(HTTPException) as exc_info:
        await require_api_key(authorization=authorization, x_api_key=x_api_key)
    assert exc_info.value.status_code == 401
