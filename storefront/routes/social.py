from starlette.requests import Request

from marketplace.errors import BadRequest
from marketplace.social import (
    ChefsRepository,
    CommentsRepository,
    FollowsRepository,
    RatingsRepository,
    clean_comment,
    parse_stars,
)
from storefront.auth import current_user, require_user
from storefront.responses import aJSONResponse, json_body, query_int


@aJSONResponse
async def chefs(request: Request):
    page = query_int(request, "page", 1, lo=1)
    limit = query_int(request, "limit", 12, lo=1, hi=50)
    items, total = await ChefsRepository(request.app.state.db).overview(
        q=request.query_params.get("q", "").strip(), page=page, limit=limit
    )
    return {"page": page, "limit": limit, "total": total, "items": items}


@aJSONResponse
async def chef_detail(request: Request):
    return await ChefsRepository(request.app.state.db).get(request.path_params["id"])


@aJSONResponse
async def follow(request: Request):
    chef_id = request.path_params["id"]
    follows = FollowsRepository(request.app.state.db)
    if request.method == "GET":
        user = current_user(request)
        return await follows.status(
            chef_id, current_user_id=None if user is None else user.id
        )

    user = require_user(request)
    if request.method == "POST":
        await follows.follow(user.id, chef_id)
    else:
        await follows.unfollow(user.id, chef_id)
    return {"ok": True}


def _dish_id(request: Request) -> str:
    dish_id = request.query_params.get("dishId")
    if not dish_id:
        raise BadRequest("Missing dishId")
    return dish_id


@aJSONResponse
async def comments(request: Request):
    repo = CommentsRepository(request.app.state.db)
    if request.method == "POST":
        user = require_user(request)
        body = await json_body(request)
        if not body.get("dishId"):
            raise BadRequest("Missing dishId")
        item = await repo.add(
            dish_id=str(body["dishId"]),
            user_id=user.id,
            content=str(body.get("content") or ""),
        )
        return {"item": item}

    return await repo.for_dish(
        _dish_id(request),
        limit=query_int(request, "limit", 10, lo=1, hi=100),
        cursor=request.query_params.get("cursor"),
        cursor_id=request.query_params.get("cursorId"),
    )


@aJSONResponse
async def comment_detail(request: Request):
    user = require_user(request)
    await CommentsRepository(request.app.state.db).delete(
        request.path_params["id"], user_id=user.id, is_admin=user.is_admin
    )
    return {"ok": True}


@aJSONResponse
async def ratings(request: Request):
    repo = RatingsRepository(request.app.state.db)
    if request.method == "POST":
        user = require_user(request)
        body = await json_body(request)
        if not body.get("dishId"):
            raise BadRequest("Missing dishId")
        item = await repo.upsert(
            dish_id=str(body["dishId"]),
            user_id=user.id,
            stars=parse_stars(body.get("stars")),
            comment=clean_comment(body.get("comment")),
        )
        return {"item": item}

    return await repo.for_dish(
        _dish_id(request),
        limit=query_int(request, "limit", 10, lo=1, hi=100),
        cursor=request.query_params.get("cursor"),
        cursor_id=request.query_params.get("cursorId"),
    )


@aJSONResponse
async def rating_detail(request: Request):
    user = require_user(request)
    repo = RatingsRepository(request.app.state.db)
    id = request.path_params["id"]
    if request.method == "PATCH":
        item = await repo.update(id, user_id=user.id, patch=await json_body(request))
        return {"item": item}
    await repo.delete(id, user_id=user.id)
    return {"ok": True}
