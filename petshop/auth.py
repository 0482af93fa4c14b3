import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .config import Settings
from .dependencies import get_current_user, get_db, get_settings
from .errors import Conflict, Unauthorized, ValidationFailed
from .models import User, UserRole
from .schemas import (
    AuthPayload,
    Envelope,
    PasswordChange,
    UserCreate,
    UserLogin,
    UserOut,
    UserUpdate,
)
from .security import hash_password, token_for_user, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_payload(user: User, settings: Settings) -> AuthPayload:
    return AuthPayload(
        user=UserOut.model_validate(user),
        token=token_for_user(user, settings),
    )


@router.post(
    "/register",
    response_model=Envelope[AuthPayload],
    status_code=status.HTTP_201_CREATED
)
def register_user(
    user_in: UserCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    # check existing user
    if db.query(User).filter(User.email == user_in.email).first():
        raise Conflict("User with this email already exists")

    user = User(
        full_name=user_in.full_name,
        email=user_in.email,
        phone=user_in.phone,
        hashed_password=hash_password(user_in.password, settings.bcrypt_rounds),
        role=UserRole.CUSTOMER,
        is_active=True,
    )

    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("User %s registered", user.id)
    return Envelope(
        message="User registered successfully",
        data=_auth_payload(user, settings),
    )


@router.post("/login", response_model=Envelope[AuthPayload])
def login_user(
    user_in: UserLogin,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = db.query(User).filter(User.email == user_in.email).first()

    # ❌ User not found or password incorrect
    if not user or not verify_password(user_in.password, user.hashed_password):
        raise Unauthorized("Invalid email or password")

    # ❌ User exists but was disabled
    if not user.is_active:
        raise Unauthorized("Account disabled")

    return Envelope(
        message="Login successful",
        data=_auth_payload(user, settings),
    )


@router.post("/refresh", response_model=Envelope[AuthPayload])
def refresh_token(
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    return Envelope(
        message="Token refreshed successfully",
        data=_auth_payload(current_user, settings),
    )


@router.get("/me", response_model=Envelope[UserOut])
def read_me(current_user: User = Depends(get_current_user)):
    return Envelope(data=UserOut.model_validate(current_user))


@router.put("/me", response_model=Envelope[UserOut])
def update_me(
    data: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationFailed("Please provide at least one field to update")

    for field, value in changes.items():
        setattr(current_user, field, value)

    db.commit()
    db.refresh(current_user)
    return Envelope(
        message="Profile updated successfully",
        data=UserOut.model_validate(current_user),
    )


@router.put("/password", response_model=Envelope[None])
def change_password(
    data: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    if not verify_password(data.current_password, current_user.hashed_password):
        raise ValidationFailed("Current password is incorrect")

    current_user.hashed_password = hash_password(data.new_password, settings.bcrypt_rounds)
    db.commit()

    logger.info("User %s changed password", current_user.id)
    return Envelope(message="Password changed successfully")
