from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel

from xaiforge.config.settings import settings

security = HTTPBearer(auto_error=False)


class User(BaseModel):
    user_id: str
    username: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode; ``user_id`` identifies the owner
        expires_delta: Token lifetime

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.security.access_token_expire_minutes)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.security.secret_key, algorithm=settings.security.algorithm)


def create_user_token(user: User) -> str:
    return create_access_token({"sub": user.username or user.user_id, "user_id": user.user_id})


def decode_token(token: str) -> User:
    """
    Decode a bearer token into the calling user.

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no user_id
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, settings.security.secret_key, algorithms=[settings.security.algorithm])
    except JWTError:
        raise credentials_exception

    user_id = payload.get("user_id")
    if user_id is None:
        raise credentials_exception

    return User(user_id=str(user_id), username=payload.get("sub"))


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> User:
    """
    Verify JWT token from Authorization header.

    Returns:
        User: Owner identity taken from the token

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_token(credentials.credentials)
