# schemas.py
"""
Boundary contracts for the Pinboard API.

Request payloads are parsed into the *In models before any query runs, and
response bodies are shaped through the *Out models so every JSON document
crossing the API has one declared form. Errors carry a tagged `kind`
(validation, unauthorized, forbidden, not_found, conflict, unexpected) so a
client can branch on the variant instead of on message text.
"""

from typing import Annotated, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
DEFAULT_CATEGORY = "general"
# Largest value sqlite will bind as an INTEGER
SQLITE_MAX_INT = 2**63 - 1

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Username = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=30, pattern=r"^[A-Za-z0-9_.]+$"),
]


# -----------------------
# Error taxonomy
# -----------------------
# Unmapped 4xx statuses (405, 413, ...) are reported as "validation": the
# request itself was wrong. Unmapped 5xx statuses are "unexpected".
ErrorKind = Literal["validation", "unauthorized", "forbidden", "not_found", "conflict", "unexpected"]


class ErrorOut(BaseModel):
    error: ErrorKind
    message: str


class ApiError(Exception):
    """Base for every error that is turned into a JSON response."""

    status_code = 500
    kind = "unexpected"
    default_message = "Something went wrong!"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return ErrorOut(error=self.kind, message=self.message).model_dump()


class ValidationError(ApiError):
    status_code = 400
    kind = "validation"
    default_message = "Invalid request"


class AuthError(ApiError):
    status_code = 401
    kind = "unauthorized"
    default_message = "Authentication required"


class ForbiddenError(ApiError):
    status_code = 403
    kind = "forbidden"
    default_message = "Not authorized"


class NotFoundError(ApiError):
    status_code = 404
    kind = "not_found"
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    kind = "conflict"
    default_message = "Already exists"


class UnexpectedError(ApiError):
    pass


def error_for_status(status_code: int, message: Optional[str] = None) -> ApiError:
    """
    Maps a bare HTTP status (e.g. from werkzeug) onto the taxonomy.

    Statuses without a dedicated kind keep their code; 4xx become
    "validation" and 5xx become "unexpected".
    """
    for cls in (ValidationError, AuthError, ForbiddenError, NotFoundError, ConflictError):
        if cls.status_code == status_code:
            return cls(message)
    err = ValidationError(message) if status_code < 500 else UnexpectedError(message)
    err.status_code = status_code
    return err


def parse(model, data):
    """Validates `data` against `model`, raising the API ValidationError on failure."""
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        message = f"{field}: {first['msg']}" if field else first["msg"]
        raise ValidationError(message) from None


# -----------------------
# Requests
# -----------------------
class SignupIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    username: Username
    first_name: str = Field("", max_length=50, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: str = Field("", max_length=50, validation_alias=AliasChoices("last_name", "lastName"))

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class LoginIn(BaseModel):
    email: NonEmptyStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class ProfileUpdateIn(BaseModel):
    first_name: Optional[NonEmptyStr] = Field(None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: Optional[NonEmptyStr] = Field(None, validation_alias=AliasChoices("last_name", "lastName"))
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = Field(None, max_length=500)


class PinCreateIn(BaseModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    description: str = Field("", max_length=2000)
    link: str = Field("", max_length=500)
    category: str = Field(DEFAULT_CATEGORY, max_length=50)
    image_base64: Optional[str] = None

    @field_validator("description", "link")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("category")
    @classmethod
    def default_category(cls, v: str) -> str:
        return v.strip() or DEFAULT_CATEGORY


class PageQuery(BaseModel):
    page: int = Field(1, ge=1, le=SQLITE_MAX_INT // MAX_PAGE_LIMIT)
    limit: int = Field(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class FeedQuery(PageQuery):
    search: Optional[str] = None
    category: Optional[str] = None

    @field_validator("search", "category")
    @classmethod
    def blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


# -----------------------
# Responses
# -----------------------
class UserSummary(BaseModel):
    id: int
    username: str
    first_name: str = ""
    last_name: str = ""
    avatar_url: str = ""


class PublicUserOut(UserSummary):
    bio: str = ""
    created_at: str


class UserOut(PublicUserOut):
    """The caller's own account. Never carries the password hash."""

    email: str
    updated_at: str


class ProfileOut(PublicUserOut):
    pins_count: int
    followers_count: int
    following_count: int
    is_following: Optional[bool] = None


class PinOut(BaseModel):
    id: int
    title: str
    description: str = ""
    image_url: str
    link: str = ""
    category: str = DEFAULT_CATEGORY
    user_id: int
    created_at: str
    updated_at: str
    user: UserSummary
    likes_count: int = 0
    saves_count: int = 0
    liked_by_me: Optional[bool] = None
    saved_by_me: Optional[bool] = None


class PinPage(BaseModel):
    pins: list[PinOut]
    page: int
    hasMore: bool


class UserPage(BaseModel):
    users: list[UserSummary]
    page: int
    hasMore: bool
