from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from entitlements.core.security import decode_access_token

# Tokens are issued by the identity service; this API only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

ADMIN_ROLE = "admin"


def get_token_payload(token: str = Depends(oauth2_scheme)) -> dict:
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if payload.get("sub") is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


def get_current_user_id(payload: dict = Depends(get_token_payload)) -> str:
    """Get current user id (the ``sub`` claim) from the JWT token."""
    return str(payload["sub"])


def require_admin(payload: dict = Depends(get_token_payload)) -> str:
    """Admin-only routes: the token must carry ``role == "admin"``. Returns the admin's user id."""
    if payload.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return str(payload["sub"])
