"""
Request schemas for the Commerce service.
"""

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
PHONE_PATTERN = r"^\+?[1-9]\d{0,15}$"

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72

# Upper bound of a PostgreSQL SERIAL column.
MAX_ID = 2**31 - 1


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class SignupRequest(BaseModel):
    """Signup payload."""
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        if not USERNAME_PATTERN.match(value):
            raise ValueError(
                "Username must be 3-50 characters long and contain only letters, numbers, and underscores"
            )
        return value

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return validate_password_strength(value)


class LoginRequest(BaseModel):
    """Login payload."""
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class PasswordChangeRequest(BaseModel):
    """Password change payload."""
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return validate_password_strength(value)


class ProfileUpdateRequest(BaseModel):
    """Profile update payload. Omitted fields are stored as null."""
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = Field(None, max_length=255)

    @field_validator("first_name", "last_name", "phone", "bio", "avatar_url", mode="before")
    @classmethod
    def strip_blank(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class OrderItemRequest(BaseModel):
    """One requested line item."""
    product_id: int = Field(..., gt=0, le=MAX_ID)
    quantity: int = Field(..., gt=0, le=MAX_ID)


class OrderRequest(BaseModel):
    """Order placement payload.

    An empty ``items`` list is accepted here and rejected by the placement
    engine with a business-rule error.
    """
    items: List[OrderItemRequest] = Field(default_factory=list)


def validate_password_strength(value: str) -> str:
    """Require upper, lower and digit characters within the bcrypt limit."""
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    return value
