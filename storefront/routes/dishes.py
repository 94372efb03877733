from typing import Any

from starlette.requests import Request

from marketplace.dishes import PENDING, DishesRepository
from marketplace.errors import BadRequest
from marketplace.payments import UserPlansRepository
from marketplace.premium import PremiumDishesRepository, dish_premium_status
from marketplace.schemas import CreateDish, PremiumToggle, ReviewAction, UpdateDish
from storefront.auth import (
    current_user,
    ensure_owner_or_admin,
    require_admin,
    require_chef_or_admin,
    require_user,
)
from storefront.responses import aJSONResponse, json_body, query_int


def _flag(value: str | None) -> bool | None:
    if value is None or value == "":
        return None
    return value.lower() in ("1", "true", "yes")


@aJSONResponse
async def dishes(request: Request):
    repo = DishesRepository(request.app.state.db)
    if request.method == "POST":
        user = require_user(request)
        body = CreateDish.model_validate(await json_body(request))
        dish = await repo.create(body, created_by=user.id)
        return dish.to_dict(), 201

    params = request.query_params
    limit = query_int(request, "limit", 20, lo=1, hi=100)
    offset = query_int(request, "offset", 0, lo=0)
    items, total = await repo.search(
        q=params.get("q", "").strip(),
        category_id=params.get("category_id"),
        diet=params.get("diet"),
        published=_flag(params.get("published")),
        limit=limit,
        offset=offset,
    )
    return {
        "items": [d.to_dict() for d in items],
        "pagination": {"limit": limit, "offset": offset, "total": total},
    }


@aJSONResponse
async def dish_detail(request: Request):
    repo = DishesRepository(request.app.state.db)
    dish = await repo.get(request.path_params["id"])
    match request.method:
        case "GET":
            return dish.to_dict()
        case "PUT":
            user = require_user(request)
            ensure_owner_or_admin(user, dish.created_by)
            patch = UpdateDish.model_validate(await json_body(request))
            return (await repo.update(dish, patch)).to_dict()
        case "DELETE":
            require_admin(request)
            await repo.delete(dish.id)
            return None, 204
        case _:
            raise BadRequest("Unsupported method")


@aJSONResponse
async def suggest(request: Request):
    q = request.query_params.get("q", "").strip()
    if not q:
        return []
    return await DishesRepository(request.app.state.db).suggest(q)


@aJSONResponse
async def premium(request: Request):
    db = request.app.state.db
    dish = await DishesRepository(db).get(request.path_params["id"])
    premium_dishes = PremiumDishesRepository(db)

    if request.method == "GET":
        user = current_user(request)
        return await dish_premium_status(
            dish.id,
            user_id=None if user is None else user.id,
            role=None if user is None else user.role,
            premium_dishes=premium_dishes,
            user_plans=UserPlansRepository(db),
        )

    user = require_chef_or_admin(request)
    ensure_owner_or_admin(user, dish.created_by)
    match request.method:
        case "POST":
            body: dict[str, Any] = {}
            if await request.body():
                body = await json_body(request)
            toggle = PremiumToggle.model_validate(body)
            await premium_dishes.upsert(dish.id, chef_id=dish.created_by, active=toggle.active)
            return {"ok": True, "active": toggle.active}, 201
        case "PATCH":
            body = await json_body(request)
            if not isinstance(body.get("active"), bool):
                raise BadRequest("'active' must be a boolean")
            await premium_dishes.set_active(dish.id, body["active"])
            return {"ok": True, "active": body["active"]}
        case "DELETE":
            await premium_dishes.delete(dish.id)
            return {"ok": True}
        case _:
            raise BadRequest("Unsupported method")


@aJSONResponse
async def moderation_list(request: Request):
    require_admin(request)
    status = request.query_params.get("status", PENDING)
    limit = query_int(request, "limit", 20, lo=1, hi=100)
    offset = query_int(request, "offset", 0, lo=0)
    items, total = await DishesRepository(request.app.state.db).for_review(
        status=None if status == "all" else status,
        q=request.query_params.get("q", "").strip(),
        limit=limit,
        offset=offset,
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@aJSONResponse
async def moderation_review(request: Request):
    require_admin(request)
    action = ReviewAction.model_validate(await json_body(request))
    dish = await DishesRepository(request.app.state.db).review(
        request.path_params["id"], action
    )
    return {"item": dish.to_dict()}
