"""
Security utilities: JWT validation.

Tokens are issued by the authentication service; this app only verifies them
and reads the owner id from the `sub` claim.
"""

from jose import jwt, JWTError

from knowledge_rag.config import get_settings


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT token. Returns payload or None if invalid."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return payload
    except JWTError:
        return None
