import base64
import binascii
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from toolchat.settings import settings


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _extract_token(authorization: Optional[str], x_api_key: Optional[str]) -> str:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _unauthorized("Invalid Authorization header, expected 'Bearer <token>'")
        return token.strip()
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    raise _unauthorized("Missing Authorization or X-API-Key header")


def _check_token(encoded: str) -> str:
    expected = settings.api_auth_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Service token is not configured",
        )
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise _unauthorized("Invalid API token")
    if not hmac.compare_digest(decoded.encode("utf-8"), expected.encode("utf-8")):
        raise _unauthorized("Invalid API token")
    return decoded


async def require_api_key(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> str:
    """
    Shared-token guard for the /mcp routes.

    Accepts `Authorization: Bearer <base64(token)>` or `X-API-Key:
    <base64(token)>`; the decoded value must equal APIPROXY_AUTH_TOKEN.
    """
    return _check_token(_extract_token(authorization, x_api_key))
