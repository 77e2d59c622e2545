"""
Homework Marketplace Engine - Authentication Utilities
JWT tokens and auth dependencies

Credentials are managed by the identity provider; this service only
verifies bearer tokens and loads the caller's {id, role}.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import JWT_ALGORITHM, JWT_SECRET_KEY
from .database import get_db
from .models.db_models import UserDB, UserRole
from .services.actor import Actor

ACCESS_TOKEN_EXPIRE_HOURS = 24

# Bearer token security
security = HTTPBearer()


def create_access_token(user_id: str, role: str, expires_in: timedelta = None) -> str:
    """Create a JWT access token with role claim."""
    expire = datetime.now(timezone.utc) + (expires_in or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode = {
        "sub": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token (signature and expiry)."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> UserDB:
    """
    Dependency to get the current authenticated user.
    Validates JWT token and fetches user from database.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id: str = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    user = db.query(UserDB).filter(UserDB.id == user_id).first()
    if user is None:
        raise credentials_exception

    return user


async def get_current_actor(current_user: UserDB = Depends(get_current_user)) -> Actor:
    """The caller as passed to service operations. Role comes from the user row."""
    return Actor.from_user(current_user)


async def require_operator(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Dependency to require the platform operator (super_agent) role.
    Use this on operator-only routes.
    """
    if actor.role != UserRole.SUPER_AGENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator access required"
        )
    return actor
