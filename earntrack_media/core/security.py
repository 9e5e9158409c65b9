"""Bearer token authentication.

Tokens are issued by the platform's auth service; this module only
validates them and extracts the owner id from the ``sub`` claim.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from earntrack_media.core.config import settings

security = HTTPBearer(auto_error=False)


def get_owner_id_from_token(token: str) -> Optional[uuid.UUID]:
    """Extract the owner id from a valid access token.

    Args:
        token: Encoded JWT token

    Returns:
        uuid.UUID | None: Owner id if the token is valid
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None

    if payload.get("type", "access") != "access":
        return None

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None


async def get_current_owner_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> uuid.UUID:
    """FastAPI dependency returning the authenticated owner's id."""
    owner_id = get_owner_id_from_token(credentials.credentials) if credentials else None
    if owner_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return owner_id
