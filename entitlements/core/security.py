from datetime import datetime, timedelta, timezone

from jose import jwt

from entitlements.core.config import SECRET_KEY, ALGORITHM


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Raises jose.JWTError on a bad signature, malformed token or expiry."""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
