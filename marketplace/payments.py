"""Plans, orders, the PayOS checkout flow and its webhook."""

from dataclasses import dataclass
import datetime as dt
import logging
import math
from typing import Any, Mapping

from databases import Database

from marketplace.db import dumps, new_id, now_iso, record_to_dict, utcnow
from marketplace.errors import BadRequest, ConfigError, InvalidSignature, Unauthorized
from marketplace.models import Order, Plan, UserPlan, parse_ts
from marketplace.payos import PayOSClient, generate_order_code, verify_webhook_signature


logger = logging.getLogger(__name__)


PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
CANCELLED = "CANCELLED"
PAID = "PAID"
FINAL_STATUSES = (COMPLETED, FAILED)

PROVIDER = "PAYOS"
UPGRADE = "UPGRADE"
DEFAULT_DURATION_DAYS = 30

PLAN_COLUMNS = (
    "id, title, description, amount, currency, duration_days, features, "
    "audience, active"
)
ORDER_COLUMNS = (
    "id, user_id, plan_id, amount, currency, order_code, status, provider, "
    "provider_payment_link_id, checkout_url, qr_code, created_at, updated_at"
)


def is_plan_expired(expiry: str | None, *, now: dt.datetime | None = None) -> bool:
    ts = parse_ts(expiry)
    if ts is None:
        return True
    return ts < (utcnow() if now is None else now)


def days_remaining(expiry: str | None, *, now: dt.datetime | None = None) -> int:
    ts = parse_ts(expiry)
    now = utcnow() if now is None else now
    if ts is None or ts < now:
        return 0
    return math.ceil((ts - now).total_seconds() / (60 * 60 * 24))


def format_price(amount: int | float, currency: str = "VND") -> str:
    if currency.upper() == "VND":
        return f"{amount:,.0f}".replace(",", ".") + " ₫"
    return f"{amount:,.2f} {currency.upper()}"


class PlansRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, plan: Plan) -> Plan:
        now = now_iso()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO plans
                (id, title, description, amount, currency, duration_days,
                 features, audience, active, created_at, updated_at)
            VALUES
                (:id, :title, :description, :amount, :currency, :duration_days,
                 :features, :audience, :active, :now, :now)
            """,
            values={
                "id": plan.id,
                "title": plan.title,
                "description": plan.description,
                "amount": plan.amount,
                "currency": plan.currency,
                "duration_days": plan.duration_days,
                "features": dumps(plan.features),
                "audience": plan.audience,
                "active": plan.active,
                "now": now,
            },
        )
        return plan

    async def get(self, id: str) -> Plan | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT {PLAN_COLUMNS} FROM plans WHERE id = :id", values={"id": id}
        )
        return None if row is None else Plan.from_row(record_to_dict(row))

    async def active(self) -> list[Plan]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT {PLAN_COLUMNS} FROM plans WHERE active = :active ORDER BY amount ASC",
            values={"active": True},
        )
        return [Plan.from_row(record_to_dict(r)) for r in rows]


class OrdersRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        *,
        user_id: str,
        plan: Plan,
        order_code: int,
        payment_link_id: str | None,
        checkout_url: str | None,
        qr_code: str | None,
        raw_payload: Mapping[str, Any],
    ) -> str:
        id = new_id()
        now = now_iso()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO orders
                (id, user_id, plan_id, amount, currency, order_code, status,
                 provider, provider_payment_link_id, checkout_url, qr_code,
                 raw_payload, created_at, updated_at)
            VALUES
                (:id, :user_id, :plan_id, :amount, :currency, :order_code, :status,
                 :provider, :link_id, :checkout_url, :qr_code,
                 :raw_payload, :now, :now)
            """,
            values={
                "id": id,
                "user_id": user_id,
                "plan_id": plan.id,
                "amount": plan.amount,
                "currency": plan.currency or "VND",
                "order_code": order_code,
                "status": PENDING,
                "provider": PROVIDER,
                "link_id": payment_link_id,
                "checkout_url": checkout_url,
                "qr_code": qr_code,
                "raw_payload": dumps(raw_payload),
                "now": now,
            },
        )
        return id

    async def by_code(self, order_code: int) -> Order | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT {ORDER_COLUMNS} FROM orders WHERE order_code = :code",
            values={"code": order_code},
        )
        return None if row is None else Order.from_row(record_to_dict(row))

    async def update_status(
        self, id: str, status: str, provider_response: Mapping[str, Any]
    ) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            UPDATE orders
            SET status = :status, provider_response = :response, updated_at = :now
            WHERE id = :id
            """,
            values={
                "id": id,
                "status": status,
                "response": dumps(provider_response),
                "now": now_iso(),
            },
        )

    async def for_user(
        self, user_id: str, *, limit: int, offset: int, status: str | None = None
    ) -> tuple[list[dict[str, Any]], int]:
        where = "o.user_id = :user_id"
        values: dict[str, Any] = {"user_id": user_id}
        if status:
            where += " AND o.status = :status"
            values["status"] = status
        total = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT COUNT(*) FROM orders o WHERE {where}", values=values
        )
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT o.id, o.order_code, o.amount, o.currency, o.status, o.provider,
                   o.created_at, o.plan_id, p.title AS plan_title
            FROM orders o LEFT JOIN plans p ON p.id = o.plan_id
            WHERE {where}
            ORDER BY o.created_at DESC, o.id DESC
            LIMIT :limit OFFSET :offset
            """,
            values={**values, "limit": limit, "offset": offset},
        )
        return [record_to_dict(r) for r in rows], int(total or 0)

    async def status_counts(self, user_id: str) -> dict[str, int]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT status, COUNT(*) AS n FROM orders
            WHERE user_id = :user_id GROUP BY status
            """,
            values={"user_id": user_id},
        )
        return {r["status"]: int(r["n"]) for r in map(record_to_dict, rows)}


class UserPlansRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, user_id: str) -> UserPlan | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT user_id, plan_id, plan_expired_at, is_premium
            FROM user_profiles WHERE user_id = :user_id
            """,
            values={"user_id": user_id},
        )
        return None if row is None else UserPlan.from_row(record_to_dict(row))

    async def upgrade(self, user_id: str, plan_id: str, expires_at: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO user_profiles (user_id, plan_id, plan_expired_at, is_premium, updated_at)
            VALUES (:user_id, :plan_id, :expires_at, :premium, :now)
            ON CONFLICT (user_id) DO UPDATE SET
                plan_id = excluded.plan_id,
                plan_expired_at = excluded.plan_expired_at,
                is_premium = excluded.is_premium,
                updated_at = excluded.updated_at
            """,
            values={
                "user_id": user_id,
                "plan_id": plan_id,
                "expires_at": expires_at,
                "premium": True,
                "now": now_iso(),
            },
        )


class TransactionsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self,
        *,
        user_id: str,
        order_id: str | None,
        plan_id: str | None,
        amount: int,
        currency: str,
        status: str,
        reference_code: int | str | None,
        notes: str,
    ) -> str:
        id = new_id()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO user_transactions
                (id, user_id, order_id, plan_id, amount, currency, payment_method,
                 transaction_type, status, reference_code, notes, created_at)
            VALUES
                (:id, :user_id, :order_id, :plan_id, :amount, :currency, :method,
                 :type, :status, :reference_code, :notes, :now)
            """,
            values={
                "id": id,
                "user_id": user_id,
                "order_id": order_id,
                "plan_id": plan_id,
                "amount": amount,
                "currency": currency,
                "method": PROVIDER,
                "type": UPGRADE,
                "status": status,
                "reference_code": None if reference_code is None else str(reference_code),
                "notes": notes,
                "now": now_iso(),
            },
        )
        return id

    async def for_user(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT * FROM user_transactions
            WHERE user_id = :user_id ORDER BY created_at DESC
            """,
            values={"user_id": user_id},
        )
        return [record_to_dict(r) for r in rows]


async def checkout(
    *,
    plan_id: str | None,
    user_id: str | None,
    session_user_id: str | None,
    return_url: str | None,
    cancel_url: str | None,
    base_url: str | None,
    payos: PayOSClient,
    plans: PlansRepository,
    orders: OrdersRepository,
) -> dict[str, Any]:
    if not plan_id or not user_id:
        raise BadRequest("Missing planId or userId")
    if session_user_id is None or session_user_id != user_id:
        raise Unauthorized()
    if not base_url:
        raise ConfigError("base_url missing")
    if not payos.configured:
        raise ConfigError("PAYOS env missing")

    plan = await plans.get(plan_id)
    if plan is None or not plan.active:
        raise BadRequest("Plan not found/inactive")
    if plan.amount <= 0:
        raise BadRequest("Invalid plan amount")

    order_code = generate_order_code()
    resp = await payos.create_payment_link(
        amount=plan.amount,
        order_code=order_code,
        description=f"Thanh toan plan {plan_id} - order {order_code}",
        return_url=f"{base_url}/checkout/return" if return_url is None else return_url,
        cancel_url=f"{base_url}/checkout/cancel" if cancel_url is None else cancel_url,
    )
    data = resp.get("data") or {}
    checkout_url = data.get("checkoutUrl")
    payment_link_id = data.get("paymentLinkId") or data.get("id")
    qr_code = data.get("qrCode")

    order_id = await orders.create(
        user_id=user_id,
        plan=plan,
        order_code=order_code,
        payment_link_id=payment_link_id,
        checkout_url=checkout_url,
        qr_code=qr_code,
        raw_payload=resp,
    )
    logger.info("Created order %s (%s) for user %s", order_id, order_code, user_id)
    return {
        "orderId": order_id,
        "orderCode": order_code,
        "checkoutUrl": checkout_url,
        "qrCode": qr_code,
        "paymentLinkId": payment_link_id,
    }


@dataclass
class WebhookResult:
    message: str
    status_code: int = 200

    def to_dict(self) -> dict[str, str]:
        key = "message" if self.status_code < 400 else "error"
        return {key: self.message}


def next_order_status(code: Any, payment_status: Any) -> str:
    if str(code) == "0" and payment_status == PAID:
        return COMPLETED
    if payment_status in (FAILED, CANCELLED):
        return FAILED
    return PENDING


async def process_webhook(
    body: Mapping[str, Any],
    *,
    header_signature: str | None,
    checksum_key: str | None,
    db: Database,
    orders: OrdersRepository,
    plans: PlansRepository,
    user_plans: UserPlansRepository,
    transactions: TransactionsRepository,
) -> WebhookResult:
    if not checksum_key:
        logger.error("PAYOS checksum key missing")
        return WebhookResult("Webhook config error", 500)

    signature = body.get("signature") or body.get("checksumSignature") or header_signature
    if not signature:
        logger.warning("Webhook without signature")
        return WebhookResult("Missing signature", 400)
    if not verify_webhook_signature(body, str(signature), checksum_key):
        logger.error("Webhook signature verification failed")
        raise InvalidSignature()
    logger.info("Webhook signature verified")

    code = body.get("code")
    data = body.get("data") or {}
    order_code = data.get("orderCode")
    payment_status = data.get("status")
    if not order_code:
        logger.warning("Webhook without orderCode")
        return WebhookResult("Missing orderCode", 400)

    try:
        order_code = int(order_code)
    except (TypeError, ValueError):
        return WebhookResult("Missing orderCode", 400)

    async with db.transaction():
        order = await orders.by_code(order_code)
        if order is None:
            # 200 so the gateway stops retrying
            logger.warning("Order not found for code %s", order_code)
            return WebhookResult("Order not found")

        if order.status in FINAL_STATUSES:
            logger.info("Order %s already processed as %s", order_code, order.status)
            return WebhookResult("Order already processed")

        new_status = next_order_status(code, payment_status)
        await orders.update_status(order.id, new_status, body)
        logger.info("Order %s: %s -> %s", order_code, order.status, new_status)

        amount = int(data.get("amount") or 0)
        currency = data.get("currency") or "VND"

        if new_status == COMPLETED:
            plan = await plans.get(order.plan_id)
            if plan is None:
                logger.error("Plan %s not found for order %s", order.plan_id, order_code)
                return WebhookResult("Updated order, but plan not found")

            days = plan.duration_days or DEFAULT_DURATION_DAYS
            expires_at = (utcnow() + dt.timedelta(days=days)).isoformat()
            await user_plans.upgrade(order.user_id, plan.id, expires_at)
            logger.info(
                "User %s upgraded to %s until %s", order.user_id, plan.id, expires_at
            )
            await transactions.add(
                user_id=order.user_id,
                order_id=order.id,
                plan_id=plan.id,
                amount=amount,
                currency=currency,
                status=COMPLETED,
                reference_code=order_code,
                notes=f"Upgraded to {plan.id} plan, expires at {expires_at}",
            )
        elif new_status == FAILED:
            await transactions.add(
                user_id=order.user_id,
                order_id=order.id,
                plan_id=order.plan_id,
                amount=amount,
                currency=currency,
                status=FAILED,
                reference_code=order_code,
                notes=f"Payment failed. Status: {payment_status}",
            )
            logger.info("Order %s failed with %s", order_code, payment_status)

    return WebhookResult("Webhook processed successfully")


async def user_transactions(
    user_id: str,
    *,
    limit: int,
    offset: int,
    status: str | None,
    orders: OrdersRepository,
) -> dict[str, Any]:
    rows, total = await orders.for_user(
        user_id, limit=limit, offset=offset, status=status.upper() if status else None
    )
    counts = await orders.status_counts(user_id)
    items = [
        {
            "id": r["id"],
            "createdAt": r["created_at"],
            "reference": int(r["order_code"]),
            "amount": r["amount"],
            "currency": r["currency"],
            "type": UPGRADE,
            "status": r["status"],
            "method": r["provider"],
            "note": r["plan_title"] or "N/A",
            "planTitle": r["plan_title"],
            "orderCode": int(r["order_code"]),
        }
        for r in rows
    ]
    return {
        "transactions": items,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "totalPages": math.ceil(total / limit),
            "currentPage": offset // limit + 1,
        },
        "stats": {
            "total": sum(counts.values()),
            "completed": counts.get(COMPLETED, 0),
            "failed": counts.get(FAILED, 0),
            "pending": counts.get(PENDING, 0),
            "paid": counts.get(PAID, 0),
        },
    }
