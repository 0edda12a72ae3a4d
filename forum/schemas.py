"""Pydantic schemas for request/response validation and serialization."""

from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from .config import settings
from .utils import USERNAME_PATTERN, normalize_name


# ==================== Error Codes ====================

class ErrorCode:
    """Centralized error codes for API responses."""
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# ==================== User Schemas ====================

class UserProfile(BaseModel):
    """Profile visible to anyone; never carries the email address."""
    id: int
    name: str
    created: datetime


class UserOut(UserProfile):
    """Account details as the owner sees them."""
    email: EmailStr


class UserRegister(BaseModel):
    """Signup form."""
    name: str = Field(..., description="Unique user name, stored lowercased")
    email: EmailStr = Field(..., max_length=settings.USER_EMAIL_MAX_LENGTH, description="User's email address")
    password: str = Field(..., max_length=100, description="Password (min 8 characters)")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = normalize_name(v)
        if not v:
            raise ValueError("This field cannot be blank")
        if not settings.USER_NAME_MIN_LENGTH <= len(v) <= settings.USER_NAME_MAX_LENGTH:
            raise ValueError(
                f"Name must be {settings.USER_NAME_MIN_LENGTH}-{settings.USER_NAME_MAX_LENGTH} characters long"
            )
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Invalid username format")
        return v

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("This field cannot be blank")
        if len(v) < settings.PASSWORD_MIN_LENGTH:
            raise ValueError(f"This field must be at least {settings.PASSWORD_MIN_LENGTH} characters long")
        if len(v.encode("utf-8")) > settings.PASSWORD_MAX_BYTES:
            raise ValueError(f"This field cannot be longer than {settings.PASSWORD_MAX_BYTES} bytes")
        return v


class UserLogin(BaseModel):
    """Login form."""
    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., min_length=1, description="User's password")

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class LoginResponse(BaseModel):
    """Returned with the session cookie after a successful login."""
    user_id: int
    name: str
    expires_at: datetime


# ==================== Post Schemas ====================

class PostCreate(BaseModel):
    title: str = Field(..., description="Post title")
    content: str = Field(..., description="Post body")
    categories: list[str] = Field(default_factory=list, description="One or more configured categories")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("This field cannot be blank")
        if len(v) > settings.POST_TITLE_MAX_LENGTH:
            raise ValueError(
                f"This field cannot be more than {settings.POST_TITLE_MAX_LENGTH} characters long"
            )
        return v

    @field_validator('content')
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("This field cannot be blank")
        return v

    @field_validator('categories')
    @classmethod
    def validate_categories(cls, v: list[str]) -> list[str]:
        allowed = settings.get_post_categories()
        chosen = [c for c in allowed if c in v]
        if not chosen:
            raise ValueError("At least one category should be checked")
        unknown = sorted(set(v) - set(allowed))
        if unknown:
            raise ValueError(f"Unknown categories: {', '.join(unknown)}")
        return chosen


class PostOut(BaseModel):
    id: int
    title: str
    content: str
    categories: list[str]
    author: str
    created: datetime
    likes: int = 0
    dislikes: int = 0
    viewer_stance: str | None = None


class CommentCreate(BaseModel):
    # Length and line limits are checked by the handler so it can re-render the post
    content: str = ""


class CommentOut(BaseModel):
    id: int
    post_id: int
    author: str
    content: str
    created: datetime
    likes: int = 0
    dislikes: int = 0
    viewer_stance: str | None = None


class PostView(BaseModel):
    """A post with its comments, as seen by the current viewer."""
    post: PostOut
    comments: list[CommentOut]
    is_authenticated: bool = False
    comment_error: str | None = None
    comment_draft: str | None = None


class FeedResponse(BaseModel):
    filter: str
    categories: list[str] = []
    items: list[PostOut]
    total: int
    is_authenticated: bool = False
