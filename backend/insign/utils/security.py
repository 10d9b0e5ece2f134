from enum import Enum
from typing import Any

from jose import JWTError, jwt

from insign.core.config import settings


class TokenType(str, Enum):
    ACCESS = "access"


def decode_token(token: str) -> dict[str, Any]:
    """Verify a caller session token issued by the authentication service."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if "token_type" not in payload:
        raise ValueError("Invalid token payload")
    return payload
