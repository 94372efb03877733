import pytest

from marketplace.models import CHEF
from marketplace.payments import OrdersRepository
from storefront.pages import safe_next


PASSWORD = "password123"

PREMIUM_DISH = {
    "title": "Bun bo Hue",
    "slug": "bun-bo-hue",
    "category_id": "soups",
    "tips": "Toast the **lemongrass** first.",
    "published": True,
}


@pytest.mark.parametrize(
    "value,expected",
    (
        (None, "/"),
        ("", "/"),
        ("/wishlist?tab=1", "/wishlist?tab=1"),
        ("//evil.test", "/"),
        ("https://evil.test", "/"),
    ),
)
def test_safe_next(value, expected) -> None:
    assert safe_next(value) == expected


@pytest.mark.asyncio
async def test_homepage_lists_published_dishes(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    await client.post("/api/dishes", json={**PREMIUM_DISH}, headers=headers)
    await client.post(
        "/api/dishes",
        json={"title": "Secret stew", "slug": "secret-stew", "category_id": "x"},
        headers=headers,
    )

    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "Bun bo Hue" in resp.text
    assert "Secret stew" not in resp.text

    resp = await client.get("/", params={"q": "stew"})
    assert "No dishes yet." in resp.text


@pytest.mark.asyncio
async def test_dish_page_locks_premium_tips(client, make_user) -> None:
    _, chef = await make_user("chef@example.com", role=CHEF)
    dish = (await client.post("/api/dishes", json=PREMIUM_DISH, headers=chef)).json()

    resp = await client.get("/dishes/bun-bo-hue")
    assert resp.status_code == 200
    assert "<strong>lemongrass</strong>" in resp.text

    await client.post(f"/api/dishes/{dish['id']}/premium", headers=chef)
    resp = await client.get("/dishes/bun-bo-hue")
    assert "Upgrade to see the full recipe" in resp.text
    assert "lemongrass" not in resp.text

    resp = await client.get("/dishes/bun-bo-hue", headers=chef)
    assert "<strong>lemongrass</strong>" in resp.text


@pytest.mark.asyncio
async def test_missing_dish_page(client) -> None:
    resp = await client.get("/dishes/nothing-here")
    assert resp.status_code == 404
    assert "text/html" in resp.headers["content-type"]


@pytest.mark.asyncio
async def test_chefs_and_upgrade_pages(client, make_user, make_plan) -> None:
    await make_user("chef@example.com", role=CHEF, display_name="Chef Lan")
    await make_plan("premium-monthly", amount=99000)

    resp = await client.get("/chefs")
    assert resp.status_code == 200
    assert "Chef Lan" in resp.text

    resp = await client.get("/upgrade")
    assert resp.status_code == 200
    assert "99.000 ₫" in resp.text
    assert 'data-plan-id="premium-monthly"' in resp.text


@pytest.mark.asyncio
async def test_checkout_return_shows_only_own_order(client, db, make_user, make_plan) -> None:
    owner, owner_headers = await make_user("owner@example.com")
    _, other_headers = await make_user("other@example.com")
    plan = await make_plan()
    await OrdersRepository(db).create(
        user_id=owner.id,
        plan=plan,
        order_code=4242,
        payment_link_id=None,
        checkout_url=None,
        qr_code=None,
        raw_payload={},
    )

    resp = await client.get("/checkout/return", params={"orderCode": "4242"}, headers=owner_headers)
    assert "Order 4242" in resp.text
    assert "PENDING" in resp.text

    resp = await client.get(
        "/checkout/return", params={"orderCode": "4242", "status": "PAID"}, headers=other_headers
    )
    assert "Order 4242" not in resp.text
    assert "Payment status: PAID" in resp.text

    resp = await client.get("/checkout/cancel", params={"orderCode": "4242"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_forbidden_page(client) -> None:
    resp = await client.get("/403")
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_signin_form_redirects_to_next(client, make_user) -> None:
    await make_user("runner@example.com")

    resp = await client.get("/auth/signin", params={"next": "/wishlist"})
    assert resp.status_code == 200
    assert 'value="/wishlist"' in resp.text

    resp = await client.post(
        "/auth/signin",
        data={"email": "runner@example.com", "password": "wrong", "next": "/wishlist"},
    )
    assert resp.status_code == 401
    assert "Invalid email or password" in resp.text

    resp = await client.post(
        "/auth/signin",
        data={"email": "runner@example.com", "password": PASSWORD, "next": "/wishlist"},
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/wishlist"

    resp = await client.get("/wishlist")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_signin_form_ignores_offsite_next(client, make_user) -> None:
    await make_user("runner@example.com")
    resp = await client.post(
        "/auth/signin",
        data={"email": "runner@example.com", "password": PASSWORD, "next": "//evil.test"},
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/"
