import math
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import UserRole

T = TypeVar("T")


# ---------- ENVELOPE ----------

class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


def paginate(query, page: int, limit: int):
    """Apply LIMIT/OFFSET as bound parameters and count the unpaged total."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if limit else 0,
    )
    return items, pagination


# ---------- USER ----------

class UserCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.lower()


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.lower()


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=20)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6, max_length=128)


class UserOut(BaseModel):
    id: int
    full_name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthPayload(BaseModel):
    user: UserOut
    token: str
