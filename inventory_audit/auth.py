"""
Authentication and authorization utilities.

Provides password hashing, JWT token creation/validation, and FastAPI dependencies
for protecting endpoints.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import config, models, schemas
from .database import get_db
from .errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

ROLE_USER = "USER"
ROLE_MANAGER = "MANAGER"
ROLE_ADMIN = "ADMIN"

# Password hashing context
pwd_context = CryptContext(schemes=config.PASSWORD_SCHEMES, deprecated="auto")

# Security scheme for JWT bearer tokens; missing credentials are reported by get_current_user
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The hashed password to compare against

    Returns:
        True if the password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password for secure storage.

    Args:
        password: The plain text password to hash

    Returns:
        The hashed password
    """
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing the claims to encode in the token
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def token_for(user: models.User) -> str:
    return create_access_token(data={"sub": user.username, "role": user.role})


def decode_access_token(token: str) -> schemas.TokenData:
    """
    Validate a JWT and extract its claims.

    Raises:
        Unauthorized: if the token is malformed, expired or has no subject
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT validation error: {e}")
        raise Unauthorized("Could not validate credentials")
    username = payload.get("sub")
    if username is None:
        logger.warning("No 'sub' claim in token")
        raise Unauthorized("Could not validate credentials")
    return schemas.TokenData(username=username, role=payload.get("role"))


def authenticate_user(db: Session, username: str, password: str) -> Optional[models.User]:
    """
    Authenticate a user by username and password.

    Args:
        db: Database session
        username: Login name
        password: Plain text password to verify

    Returns:
        User object if authentication succeeds, None otherwise
    """
    user = db.query(models.User).filter(models.User.username == username).first()
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> models.User:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)
        db: Database session (injected)

    Returns:
        Current authenticated user

    Raises:
        Unauthorized: if the token is missing or invalid, or the user no longer exists
        Forbidden: if the account is disabled
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    token_data = decode_access_token(credentials.credentials)
    user = db.query(models.User).filter(models.User.username == token_data.username).first()
    if user is None:
        raise Unauthorized("Could not validate credentials")
    if not user.enabled:
        raise Forbidden("User account is disabled")
    return user


def get_actor(current_user: models.User = Depends(get_current_user)) -> str:
    """
    FastAPI dependency yielding the identifier recorded as the actor of
    audit events: the caller's username.
    """
    return current_user.username


def require_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    """
    FastAPI dependency to require admin role.

    Args:
        current_user: Current authenticated user (injected)

    Returns:
        Current user if they are an admin

    Raises:
        Forbidden: if user is not an admin
    """
    if current_user.role != ROLE_ADMIN:
        raise Forbidden("Admin privileges required")
    return current_user
