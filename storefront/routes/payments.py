import json
import logging

from starlette.requests import Request
from starlette.responses import JSONResponse

from marketplace.errors import StorefrontError
from marketplace.payments import (
    OrdersRepository,
    PlansRepository,
    TransactionsRepository,
    UserPlansRepository,
    checkout as start_checkout,
    process_webhook,
    user_transactions,
)
from storefront.auth import current_user, require_user
from storefront.config import Config
from storefront.responses import aJSONResponse, json_body, query_int


logger = logging.getLogger(__name__)


@aJSONResponse
async def plans(request: Request):
    active = await PlansRepository(request.app.state.db).active()
    return {"plans": [p.to_dict() for p in active]}


@aJSONResponse
async def checkout(request: Request):
    db = request.app.state.db
    config: Config = request.app.state.config
    body = await json_body(request)
    user = current_user(request)
    try:
        return await start_checkout(
            plan_id=body.get("planId"),
            user_id=body.get("userId"),
            session_user_id=None if user is None else user.id,
            return_url=body.get("returnUrl"),
            cancel_url=body.get("cancelUrl"),
            base_url=config.base_url,
            payos=request.app.state.payos,
            plans=PlansRepository(db),
            orders=OrdersRepository(db),
        )
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("Checkout failed")
        return {"error": str(e) or "Failed to create checkout"}, 500


async def payos_webhook(request: Request) -> JSONResponse:
    if request.method == "GET":
        return JSONResponse({"message": "Webhook endpoint is ready"})

    config: Config = request.app.state.config
    if not config.payos_checksum_key:
        logger.error("Webhook received but PAYOS checksum key is not configured")
        return JSONResponse({"error": "Webhook config error"}, status_code=500)
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)
    logger.info("PayOS webhook received")

    db = request.app.state.db
    try:
        result = await process_webhook(
            body,  # pyright: ignore[reportUnknownArgumentType]
            header_signature=request.headers.get("x-payos-signature"),
            checksum_key=config.payos_checksum_key,
            db=db,
            orders=OrdersRepository(db),
            plans=PlansRepository(db),
            user_plans=UserPlansRepository(db),
            transactions=TransactionsRepository(db),
        )
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("Webhook processing failed")
        return JSONResponse({"error": str(e) or "Webhook error"}, status_code=500)
    return JSONResponse(result.to_dict(), status_code=result.status_code)


@aJSONResponse
async def me_plan(request: Request):
    user = require_user(request)
    plan = await UserPlansRepository(request.app.state.db).get(user.id)
    return {
        "id": user.id,
        "email": user.email,
        "plan_id": None if plan is None else plan.plan_id,
        "plan_expired_at": None if plan is None else plan.plan_expired_at,
        "is_premium": False if plan is None else plan.is_premium,
    }


@aJSONResponse
async def me_transactions(request: Request):
    user = require_user(request)
    return await user_transactions(
        user.id,
        limit=query_int(request, "limit", 50, lo=1, hi=100),
        offset=query_int(request, "offset", 0, lo=0),
        status=request.query_params.get("status") or None,
        orders=OrdersRepository(request.app.state.db),
    )
