"""
JWT token service for authentication.
"""
from datetime import timedelta

from jose import JWTError, jwt

from app.config import settings
from app.models.base import utcnow


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def create_token(self, user_id: str, username: str) -> str:
        """
        Create a JWT token with user context.

        Args:
            user_id: User's unique ID
            username: User's login name

        Returns:
            Encoded JWT token string
        """
        expires = utcnow() + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

        payload = {
            "sub": user_id,
            "username": username,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Args:
            token: JWT token string

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
            return payload
        except JWTError:
            return None
