"""
Auth router — operator login and token endpoints.
Plain JWT bearer tokens; only clinic staff with an operator role log in.

A token carries the role it was issued for. Changing an operator's role
(or deactivating them) invalidates their outstanding tokens.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.party import User
from app.schemas.auth import TokenPayload, TokenResponse, UserMeResponse
from app.settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


# ── Helpers ───────────────────────────────────────────────────────────────────


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    payload = data.copy()
    lifetime = timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    payload["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def token_for(user: User) -> str:
    return create_access_token(
        {"sub": user.email, "user_id": str(user.id), "role": user.role}
    )


def _decode(token: str) -> Optional[TokenPayload]:
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        return TokenPayload.model_validate(claims)
    except (JWTError, ValueError):
        return None


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    claims = _decode(token)
    if claims is None:
        raise credentials_exc
    try:
        user_id = uuid.UUID(claims.user_id)
    except ValueError:
        raise credentials_exc

    user = db.get(User, user_id)
    if user is None or not user.is_active or user.role != claims.role:
        raise credentials_exc
    return user


def require_role(*roles: str):
    """Dependency factory — raises 403 if the user doesn't have one of the required roles."""

    def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {list(roles)}",
            )
        return current_user

    return _check


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("/token", response_model=TokenResponse)
def login(
    form: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
) -> TokenResponse:
    """Exchange email + password for a JWT access token. Email is case-insensitive."""
    email = form.username.strip().lower()
    user = db.query(User).filter(func.lower(User.email) == email).first()
    if user is None or not verify_password(form.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive"
        )

    return TokenResponse(
        access_token=token_for(user),
        role=user.role,
        expires_in=settings.access_token_expire_minutes * 60,
    )


@router.get("/me", response_model=UserMeResponse)
def me(current_user: User = Depends(get_current_user)) -> User:
    return current_user
