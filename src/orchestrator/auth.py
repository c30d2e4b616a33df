"""Authentication for the chat API.

Bearer JWTs identify the caller. A request without credentials is
anonymous; a request with an invalid token is rejected. Issuing tokens
(login, signup) is handled elsewhere; ``create_token`` exists for
operators and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from shared.config import AuthSettings
from shared.logging import get_logger
from shared.models import UserContext

logger = get_logger(__name__)

ALGORITHM = "HS256"
security = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    """Data extracted from JWT token."""
    user_id: str
    username: str
    email: Optional[str] = None
    roles: list[str] = []


class Authenticator:
    """Issues and verifies bearer tokens."""

    def __init__(self, settings: AuthSettings) -> None:
        self.settings = settings

    def create_token(self, user: UserContext) -> str:
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.settings.token_expire_minutes)
        payload = {
            "sub": user.user_id,
            "username": user.username,
            "email": user.email,
            "roles": user.roles,
            "exp": expire,
        }
        return jwt.encode(payload, self.settings.secret_key, algorithm=ALGORITHM)

    def verify_token(self, token: str) -> TokenData:
        """
        Verify and decode a JWT token.

        Raises:
            HTTPException: If token is invalid, expired or has no subject
        """
        try:
            payload = jwt.decode(token, self.settings.secret_key, algorithms=[ALGORITHM])
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has no subject",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return TokenData(
            user_id=user_id,
            username=payload.get("username") or user_id,
            email=payload.get("email"),
            roles=payload.get("roles") or [],
        )

    def get_user_context(self, token_data: TokenData) -> UserContext:
        return UserContext(
            user_id=token_data.user_id,
            username=token_data.username,
            email=token_data.email,
            roles=token_data.roles,
        )

    def optional_user(
        self,
        credentials: Optional[HTTPAuthorizationCredentials],
    ) -> Optional[UserContext]:
        """The caller's identity, or None when no credentials were sent."""
        if credentials is None:
            return None
        return self.get_user_context(self.verify_token(credentials.credentials))

    def required_user(
        self,
        credentials: Optional[HTTPAuthorizationCredentials],
    ) -> UserContext:
        user = self.optional_user(credentials)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return user
