from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
import jwt

from .config import Settings
from .errors import Forbidden, Unauthorized
from .models import User
from .security import decode_access_token

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request):
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    # 1. Check header presence
    if credentials is None:
        raise Unauthorized("No token provided")

    if credentials.scheme.lower() != "bearer":
        raise Unauthorized("Invalid authentication scheme")

    # 2. Decode JWT
    try:
        payload = decode_access_token(credentials.credentials, settings)
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")

    user_id = payload.get("user_id")
    if not user_id:
        raise Unauthorized("Invalid token payload")

    # 3. Load user
    user = (
        db.query(User)
        .filter(User.id == user_id, User.is_active.is_(True))
        .first()
    )
    if not user:
        raise Unauthorized("Invalid token or user not found")

    return user


def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise Forbidden("Admin privileges required")
    return current_user
