from dataclasses import dataclass
import logging
from typing import Any

from databases import Database

from marketplace.db import now_iso, record_to_dict, utcnow
from marketplace.models import ADMIN, PremiumDish
from marketplace.payments import UserPlansRepository


logger = logging.getLogger(__name__)


REQUIRED_PLAN = "premium"


@dataclass
class PremiumAccess:
    is_authenticated: bool
    is_premium: bool
    plan_id: str | None = None
    plan_expired_at: str | None = None


async def check_premium_access(
    user_id: str | None, *, user_plans: UserPlansRepository
) -> PremiumAccess:
    if user_id is None:
        return PremiumAccess(is_authenticated=False, is_premium=False)
    plan = await user_plans.get(user_id)
    if plan is None:
        return PremiumAccess(is_authenticated=True, is_premium=False)
    expires = plan.expires
    is_premium = (
        plan.is_premium
        and bool(plan.plan_id)
        and expires is not None
        and expires > utcnow()
    )
    return PremiumAccess(
        is_authenticated=True,
        is_premium=is_premium,
        plan_id=plan.plan_id,
        plan_expired_at=plan.plan_expired_at,
    )


class PremiumDishesRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, dish_id: str) -> PremiumDish | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT dish_id, chef_id, required_plan, active
            FROM premium_dishes WHERE dish_id = :dish_id
            """,
            values={"dish_id": dish_id},
        )
        return None if row is None else PremiumDish.from_row(record_to_dict(row))

    async def upsert(self, dish_id: str, *, chef_id: str | None, active: bool) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO premium_dishes (dish_id, chef_id, required_plan, active, created_at)
            VALUES (:dish_id, :chef_id, :required_plan, :active, :now)
            ON CONFLICT (dish_id) DO UPDATE SET
                chef_id = excluded.chef_id,
                required_plan = excluded.required_plan,
                active = excluded.active
            """,
            values={
                "dish_id": dish_id,
                "chef_id": chef_id,
                "required_plan": REQUIRED_PLAN,
                "active": active,
                "now": now_iso(),
            },
        )

    async def set_active(self, dish_id: str, active: bool) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "UPDATE premium_dishes SET active = :active WHERE dish_id = :dish_id",
            values={"dish_id": dish_id, "active": active},
        )

    async def delete(self, dish_id: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "DELETE FROM premium_dishes WHERE dish_id = :dish_id",
            values={"dish_id": dish_id},
        )


async def dish_premium_status(
    dish_id: str,
    *,
    user_id: str | None,
    role: str | None,
    premium_dishes: PremiumDishesRepository,
    user_plans: UserPlansRepository,
) -> dict[str, Any]:
    """Whether a dish is premium and whether this viewer may see it."""
    prem = await premium_dishes.get(dish_id)
    if prem is None:
        return {"isPremium": False, "canView": True}

    if user_id is not None and (user_id == prem.chef_id or role == ADMIN):
        return {
            "isPremium": True,
            "active": prem.active,
            "canView": True,
            "reason": "owner_or_admin",
        }

    if not prem.active:
        return {"isPremium": True, "active": False, "canView": True, "reason": "inactive"}

    access = await check_premium_access(user_id, user_plans=user_plans)
    return {
        "isPremium": True,
        "active": True,
        "canView": access.is_premium,
        "reason": "has_plan" if access.is_premium else "plan_required",
    }
