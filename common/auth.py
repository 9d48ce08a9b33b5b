import hmac
import json
from typing import Any, Dict

import jwt
from fastapi import Header, HTTPException, status

from .secrets import get_secret


def _operator_tokens() -> Dict[str, str]:
    tokens = get_secret("API_TOKENS", {})
    if isinstance(tokens, str):
        # env form: API_TOKENS='{"ops": "s3cret"}'
        try:
            tokens = json.loads(tokens)
        except ValueError:
            return {}
    return tokens if isinstance(tokens, dict) else {}


def require_operator(authorization: str | None = Header(None)) -> Dict[str, Any]:
    """Guard money-moving endpoints with a bearer token (static or HS256 JWT)."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    if token.count(".") == 2:
        secret = get_secret("JWT_SECRET")
        if not secret:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden"
            )
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.PyJWTError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden"
            ) from exc

    for user, expected in _operator_tokens().items():
        if hmac.compare_digest(token, str(expected)):
            return {"sub": user}
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
