"""Request bodies validated at the route boundary."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


SLUG_PATTERN = r"^[a-z0-9-]+$"


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _http_url(value: str | None) -> str | None:
    if value is not None and not value.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return value


class Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateDish(Body):
    title: str = Field(min_length=1, max_length=160)
    slug: str = Field(min_length=1, max_length=160, pattern=SLUG_PATTERN)
    cover_image_url: str | None = None
    category_id: str = Field(min_length=1, max_length=64)
    diet: str | None = Field(default=None, min_length=1, max_length=30)
    time_minutes: int | None = Field(default=None, ge=0, le=100000)
    servings: int | None = Field(default=None, ge=1, le=1000)
    tips: str | None = Field(default=None, max_length=5000)
    published: bool = False

    @field_validator("cover_image_url", mode="before")
    @classmethod
    def blank_cover(cls, value: Any) -> Any:
        return _empty_to_none(value)

    @field_validator("cover_image_url")
    @classmethod
    def cover_url(cls, value: str | None) -> str | None:
        return _http_url(value)


class UpdateDish(Body):
    title: str | None = Field(default=None, min_length=1, max_length=160)
    slug: str | None = Field(
        default=None, min_length=1, max_length=160, pattern=SLUG_PATTERN
    )
    cover_image_url: str | None = None
    category_id: str | None = Field(default=None, min_length=1, max_length=64)
    diet: str | None = Field(default=None, min_length=1, max_length=30)
    time_minutes: int | None = Field(default=None, ge=0, le=100000)
    servings: int | None = Field(default=None, ge=1, le=1000)
    tips: str | None = Field(default=None, max_length=5000)
    published: bool | None = None

    # None here only means "not sent"; an explicit null is not a value
    @field_validator(
        "title",
        "slug",
        "category_id",
        "diet",
        "time_minutes",
        "servings",
        "tips",
        "published",
        mode="before",
    )
    @classmethod
    def not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

    @field_validator("cover_image_url", mode="before")
    @classmethod
    def blank_cover(cls, value: Any) -> Any:
        return _empty_to_none(value)

    @field_validator("cover_image_url")
    @classmethod
    def cover_url(cls, value: str | None) -> str | None:
        return _http_url(value)


class ProfileInput(Body):
    full_name: str | None = Field(default=None, alias="fullName", max_length=120)
    avatar_url: str | None = Field(default=None, alias="avatarUrl")
    bio: str | None = Field(default=None, max_length=1000)
    skills: list[str] | None = Field(default=None, max_length=100)

    @field_validator("avatar_url")
    @classmethod
    def avatar(cls, value: str | None) -> str | None:
        return _http_url(value)


class ReviewAction(Body):
    action: Literal["approve", "reject"]
    reason: str | None = Field(default=None, max_length=2000)


class PremiumToggle(Body):
    active: bool = True


class Signup(Body):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=8, max_length=128)
    display_name: str | None = Field(default=None, alias="fullName", max_length=120)


class Signin(Body):
    email: str
    password: str


class SupportMessageInput(Body):
    text: str = Field(min_length=1, max_length=5000)

    @field_validator("text")
    @classmethod
    def strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value
