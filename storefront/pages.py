"""Server-rendered pages."""

from jinja2 import Environment
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from marketplace.dishes import DishesRepository
from marketplace.errors import NotFound, Unauthorized
from marketplace.payments import (
    OrdersRepository,
    PlansRepository,
    UserPlansRepository,
    days_remaining,
    format_price,
)
from marketplace.premium import PremiumDishesRepository, dish_premium_status
from marketplace.profiles import ProfilesRepository, authenticate
from marketplace.social import ChefsRepository
from storefront.auth import current_user
from storefront.config import Config
from storefront.html.dish_detail import DishDetail
from storefront.responses import aHTMLResponse


def templates(request: Request) -> Environment:
    return request.app.state.templates


def render(request: Request, name: str, **context: object) -> str:
    config: Config = request.app.state.config
    return templates(request).get_template(name).render(
        store_name=config.store_name,
        user=current_user(request),
        format_price=format_price,
        **context,
    )


def safe_next(value: str | None) -> str:
    if not value or not value.startswith("/") or value.startswith("//"):
        return "/"
    return value


@aHTMLResponse
async def homepage(request: Request):
    q = request.query_params.get("q", "").strip()
    dishes, total = await DishesRepository(request.app.state.db).search(
        q=q, published=True, limit=24
    )
    return render(request, "index.html", dishes=dishes, total=total, q=q)


@aHTMLResponse
async def dish_page(request: Request):
    db = request.app.state.db
    try:
        dish = await DishesRepository(db).get(request.path_params["slug"])
    except NotFound:
        return render(request, "not-found.html"), 404
    user = current_user(request)
    premium = await dish_premium_status(
        dish.id,
        user_id=None if user is None else user.id,
        role=None if user is None else user.role,
        premium_dishes=PremiumDishesRepository(db),
        user_plans=UserPlansRepository(db),
    )
    detail = DishDetail(dish, premium=premium, environment=templates(request))
    config: Config = request.app.state.config
    return detail.render(store_name=config.store_name, user=user)


@aHTMLResponse
async def chefs_page(request: Request):
    chefs, total = await ChefsRepository(request.app.state.db).overview(limit=50)
    return render(request, "chefs.html", chefs=chefs, total=total)


@aHTMLResponse
async def upgrade_page(request: Request):
    db = request.app.state.db
    plans = await PlansRepository(db).active()
    user = current_user(request)
    plan = None if user is None else await UserPlansRepository(db).get(user.id)
    return render(
        request,
        "upgrade.html",
        plans=plans,
        plan=plan,
        days_left=0 if plan is None else days_remaining(plan.plan_expired_at),
    )


@aHTMLResponse
async def checkout_return(request: Request):
    order = None
    raw_code = request.query_params.get("orderCode", "")
    if raw_code.isdigit():
        order = await OrdersRepository(request.app.state.db).by_code(int(raw_code))
        user = current_user(request)
        if order is not None and (user is None or user.id != order.user_id):
            order = None
    return render(
        request,
        "checkout-return.html",
        order=order,
        status=request.query_params.get("status", ""),
    )


@aHTMLResponse
async def checkout_cancel(request: Request):
    return render(
        request,
        "checkout-cancel.html",
        order_code=request.query_params.get("orderCode", ""),
    )


@aHTMLResponse
async def forbidden(request: Request):
    return render(request, "403.html"), 403


@aHTMLResponse
async def wishlist(request: Request):
    return render(request, "wishlist.html")


async def signin_page(request: Request) -> Response:
    next_url = safe_next(request.query_params.get("next"))
    if request.method == "GET":
        html = render(request, "signin.html", next=next_url, error=None)
        return HTMLResponse(html)

    async with request.form() as form:
        email = str(form.get("email") or "")
        password = str(form.get("password") or "")
        next_url = safe_next(str(form.get("next") or next_url))
    try:
        profile = await authenticate(
            email=email,
            password=password,
            repository=ProfilesRepository(request.app.state.db),
        )
    except Unauthorized as e:
        html = render(request, "signin.html", next=next_url, error=e.message)
        return HTMLResponse(html, status_code=401)
    request.session["user_id"] = profile.id
    return RedirectResponse(next_url, status_code=303)
