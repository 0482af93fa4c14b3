from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

from .config import Settings


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed hash in the database
        return False


def create_access_token(
    data: dict,
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    to_encode.update({"exp": expire})

    token = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    return token


def token_for_user(user, settings: Settings) -> str:
    return create_access_token(
        data={
            "sub": user.email,
            "user_id": user.id,
            "role": user.role.value,
        },
        settings=settings,
    )


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
