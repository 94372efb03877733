from dataclasses import asdict, dataclass, field
import datetime as dt
from typing import Any, Mapping

import markdown2  # pyright: ignore[reportMissingTypeStubs]

from marketplace.db import loads


ADMIN = "admin"
CHEF = "chef"
USER = "user"


def parse_ts(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    ts = dt.datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts


@dataclass(kw_only=True)
class Profile:
    id: str
    email: str
    display_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    skills: list[str] = field(default_factory=list)
    role: str = USER
    cert_status: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            avatar_url=row["avatar_url"],
            bio=row["bio"],
            skills=loads(row["skills"], []),
            role=row["role"] or USER,
            cert_status=row["cert_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    def to_private_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.display_name or "",
            "avatarUrl": self.avatar_url or "",
            "bio": self.bio or "",
            "skills": self.skills,
            "role": self.role,
            "certStatus": self.cert_status or "none",
            "updatedAt": self.updated_at,
        }

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fullName": self.display_name or "",
            "avatarUrl": self.avatar_url or "",
            "bio": self.bio or "",
            "skills": self.skills,
            "updatedAt": self.updated_at,
        }


@dataclass(kw_only=True)
class UserPlan:
    user_id: str
    plan_id: str | None = None
    plan_expired_at: str | None = None
    is_premium: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserPlan":
        return cls(
            user_id=row["user_id"],
            plan_id=row["plan_id"],
            plan_expired_at=row["plan_expired_at"],
            is_premium=bool(row["is_premium"]),
        )

    @property
    def expires(self) -> dt.datetime | None:
        return parse_ts(self.plan_expired_at)


@dataclass(kw_only=True)
class Plan:
    id: str
    title: str
    amount: int
    currency: str = "VND"
    duration_days: int = 30
    description: str | None = None
    features: list[str] = field(default_factory=list)
    audience: str = USER
    active: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Plan":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            amount=row["amount"],
            currency=row["currency"],
            duration_days=row["duration_days"],
            features=loads(row["features"], []),
            audience=row["audience"],
            active=bool(row["active"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(kw_only=True)
class Order:
    id: str
    user_id: str
    plan_id: str
    amount: int
    currency: str
    order_code: int
    status: str
    provider: str
    provider_payment_link_id: str | None = None
    checkout_url: str | None = None
    qr_code: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            plan_id=row["plan_id"],
            amount=row["amount"],
            currency=row["currency"],
            order_code=int(row["order_code"]),
            status=row["status"],
            provider=row["provider"],
            provider_payment_link_id=row["provider_payment_link_id"],
            checkout_url=row["checkout_url"],
            qr_code=row["qr_code"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(kw_only=True)
class Dish:
    id: str
    title: str
    slug: str
    category_id: str | None = None
    cover_image_url: str | None = None
    diet: str | None = None
    time_minutes: int | None = None
    servings: int | None = None
    tips: str | None = None
    created_by: str | None = None
    published: bool = False
    review_status: str = "pending"
    review_note: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Dish":
        return cls(
            id=row["id"],
            title=row["title"],
            slug=row["slug"],
            category_id=row["category_id"],
            cover_image_url=row["cover_image_url"],
            diet=row["diet"],
            time_minutes=row["time_minutes"],
            servings=row["servings"],
            tips=row["tips"],
            created_by=row["created_by"],
            published=bool(row["published"]),
            review_status=row["review_status"],
            review_note=row["review_note"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def tips_html(self) -> str:
        return markdown2.markdown(  # pyright: ignore[reportUnknownVariableType, reportUnknownMemberType]
            self.tips or "", extras=["fenced-code-blocks", "tables"]
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(kw_only=True)
class PremiumDish:
    dish_id: str
    chef_id: str | None
    required_plan: str = "premium"
    active: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PremiumDish":
        return cls(
            dish_id=row["dish_id"],
            chef_id=row["chef_id"],
            required_plan=row["required_plan"],
            active=bool(row["active"]),
        )


@dataclass(kw_only=True)
class Certificate:
    id: str
    user_id: str
    title: str
    file_path: str
    mime_type: str
    status: str = "pending"
    created_at: str | None = None
    reviewed_at: str | None = None
    rejection_reason: str | None = None

    LINK_MIME = "link/url"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Certificate":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            file_path=row["file_path"],
            mime_type=row["mime_type"],
            status=row["status"],
            created_at=row["created_at"],
            reviewed_at=row["reviewed_at"],
            rejection_reason=row["rejection_reason"],
        )

    @property
    def is_link(self) -> bool:
        return self.mime_type == self.LINK_MIME

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(kw_only=True)
class SupportMessage:
    id: str
    session_id: str
    user_id: str | None
    role: str
    text: str
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SupportMessage":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            role=row["role"],
            text=row["text"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
