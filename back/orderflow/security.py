from datetime import datetime, timedelta, timezone
from typing import Annotated

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlmodel import Session, select

from .db import get_session
from .models import User
from .permissions import PermissionService, Permissions
from .settings import Settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(data: dict, app_settings: Settings, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, app_settings.secret_key, algorithm=app_settings.algorithm)
    return encoded_jwt


def decode_access_token(token: str, app_settings: Settings) -> dict | None:
    """Return the claims of a token signed with `app_settings.secret_key`, None otherwise."""
    try:
        payload = jwt.decode(token, app_settings.secret_key, algorithms=[app_settings.algorithm])
    except JWTError:
        return None
    if payload.get("sub") is None or payload.get("role") is None:
        return None
    return payload


def _token_from_request(request: Request, token: str | None) -> str | None:
    # Cookie first, Authorization header (Bearer token) as fallback
    return request.cookies.get("access_token") or token


def _load_user(session: Session, payload: dict) -> User | None:
    user = session.exec(select(User).where(User.username == payload["sub"])).first()
    # A role change invalidates tokens issued for the old role
    if user is None or user.role.value != payload["role"]:
        return None
    return user


async def get_current_user(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    session: Annotated[Session, Depends(get_session)],
) -> User:
    raw_token = _token_from_request(request, token)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    payload = decode_access_token(raw_token, request.app.state.settings)
    if payload is None:
        raise credentials_exception
    user = _load_user(session, payload)
    if user is None:
        raise credentials_exception
    return user


async def get_optional_user(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    session: Annotated[Session, Depends(get_session)],
) -> User | None:
    """Like get_current_user, but anonymous (or badly authenticated) callers get None."""
    raw_token = _token_from_request(request, token)
    if not raw_token:
        return None
    payload = decode_access_token(raw_token, request.app.state.settings)
    if payload is None:
        return None
    return _load_user(session, payload)


class PermissionChecker:
    """Dependency that lets a request through only if the user's role grants `required`."""

    def __init__(self, required: Permissions):
        self.required = required

    def __call__(self, user: Annotated[User, Depends(get_current_user)]) -> User:
        if not PermissionService.has_permission(user, self.required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {self.required.value}",
            )
        return user
