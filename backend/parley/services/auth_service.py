"""
Passwords and access tokens.

Tokens are HS256 JWTs carrying the user id as subject and SERVER_DOMAIN as
issuer.  The HTTP dependency and the websocket handshake both resolve them
through get_user_from_token(); nothing else decodes a token.
"""

from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from parley.config import settings
from parley.models.user import User


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def token_lifetime() -> timedelta:
    return timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_access_token(user: User, expires_delta: timedelta | None = None) -> str:
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "iss": settings.SERVER_DOMAIN,
        "exp": datetime.now(timezone.utc) + (expires_delta or token_lifetime()),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Verified claims, or None for a bad signature, expiry or malformed token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def get_user_from_token(token: str, db: Session) -> User | None:
    claims = decode_access_token(token)
    if not claims or claims.get("iss") != settings.SERVER_DOMAIN:
        return None
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
    return db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()


def authenticate(db: Session, username: str, password: str) -> User | None:
    """The active user matching the credentials, or None.  Callers turn None into a 401."""
    user = db.query(User).filter(User.username == username).first()
    if user is None or not user.is_active:
        return None
    return user if verify_password(password, user.hashed_password) else None
