from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user
from parley.core.errors import AuthenticationError, ConflictError
from parley.database import get_db
from parley.models.user import User
from parley.schemas.user import Token, UserCreate, UserLogin, UserResponse
from parley.services import auth_service
from parley.services.retry import commit

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_for(user: User) -> Token:
    lifetime = auth_service.token_lifetime()
    return Token(
        access_token=auth_service.create_access_token(user, expires_delta=lifetime),
        expires_in=int(lifetime.total_seconds()),
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=Token)
async def register(user_in: UserCreate, db: Session = Depends(get_db)) -> Token:
    if db.query(User).filter(User.username == user_in.username).first():
        raise ConflictError("Username already registered")
    if db.query(User).filter(User.email == user_in.email).first():
        raise ConflictError("Email already registered")

    user = User(
        username=user_in.username,
        email=user_in.email,
        hashed_password=auth_service.hash_password(user_in.password),
    )
    db.add(user)
    commit(db)
    db.refresh(user)
    return _token_for(user)


@router.post("/login", response_model=Token)
async def login(credentials: UserLogin, db: Session = Depends(get_db)) -> Token:
    user = auth_service.authenticate(db, credentials.username, credentials.password)
    if user is None:
        raise AuthenticationError("Invalid credentials")
    return _token_for(user)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)
