import pytest

from marketplace.dishes import CategoriesRepository, DishesRepository, identifier_column
from marketplace.models import ADMIN, CHEF
from marketplace.schemas import CreateDish


def dish(slug: str, **fields) -> dict:
    return {"title": slug.replace("-", " ").title(), "slug": slug, "category_id": "mains", **fields}


@pytest.mark.parametrize(
    "identifier,expected",
    (
        ("0f8fad5bd9cb469fa16570867728950e", "id"),
        ("0F8FAD5B-D9CB-469F-A165-70867728950E", "id"),
        ("pho-bo", "slug"),
        ("0f8fad5b", "slug"),
    ),
)
def test_identifier_column(identifier: str, expected: str) -> None:
    assert identifier_column(identifier) == expected


@pytest.mark.asyncio
async def test_create_and_fetch_by_id_or_slug(client, make_user) -> None:
    profile, headers = await make_user("cook@example.com")
    resp = await client.post(
        "/api/dishes",
        json=dish("banh-mi", tips="Crisp the bread", time_minutes=20, servings=2),
        headers=headers,
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["created_by"] == profile.id
    assert created["review_status"] == "pending"
    assert created["published"] is False

    by_id = (await client.get(f"/api/dishes/{created['id']}")).json()
    by_slug = (await client.get("/api/dishes/banh-mi")).json()
    assert by_id == by_slug == created

    assert (await client.get("/api/dishes/missing")).status_code == 404


@pytest.mark.asyncio
async def test_create_requires_user(client) -> None:
    resp = await client.post("/api/dishes", json=dish("banh-mi"))
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_create_validation(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")

    resp = await client.post("/api/dishes", json=dish("Bad Slug"), headers=headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid body"
    assert body["issues"][0]["loc"] == ["slug"]

    resp = await client.post(
        "/api/dishes", json=dish("ok", cover_image_url="ftp://x"), headers=headers
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/api/dishes", json=dish("ok", cover_image_url=""), headers=headers
    )
    assert resp.status_code == 201
    assert resp.json()["cover_image_url"] is None

    resp = await client.post("/api/dishes", json=dish("ok"), headers=headers)
    assert resp.status_code == 409
    assert resp.json() == {"error": "Slug ok already exists"}

    resp = await client.post(
        "/api/dishes", content=b"[1, 2]", headers={**headers, "content-type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON"}


@pytest.mark.asyncio
async def test_list_filters_and_pagination(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    for slug, diet, published in (
        ("green-curry", "vegan", True),
        ("red-curry", "vegan", False),
        ("beef-stew", None, True),
    ):
        fields = {"published": published}
        if diet:
            fields["diet"] = diet
        resp = await client.post("/api/dishes", json=dish(slug, **fields), headers=headers)
        assert resp.status_code == 201

    body = (await client.get("/api/dishes", params={"q": "CURRY"})).json()
    assert {d["slug"] for d in body["items"]} == {"green-curry", "red-curry"}
    assert body["pagination"] == {"limit": 20, "offset": 0, "total": 2}

    body = (await client.get("/api/dishes", params={"published": "true"})).json()
    assert {d["slug"] for d in body["items"]} == {"green-curry", "beef-stew"}

    body = (await client.get("/api/dishes", params={"diet": "vegan", "published": "0"})).json()
    assert [d["slug"] for d in body["items"]] == ["red-curry"]

    body = (await client.get("/api/dishes", params={"limit": 2, "offset": 2})).json()
    assert len(body["items"]) == 1
    assert body["pagination"]["total"] == 3


@pytest.mark.asyncio
async def test_update_owner_or_admin(client, make_user) -> None:
    _, owner = await make_user("owner@example.com")
    created = (await client.post("/api/dishes", json=dish("pho"), headers=owner)).json()
    await client.post("/api/dishes", json=dish("bun-cha"), headers=owner)
    url = f"/api/dishes/{created['id']}"

    resp = await client.put(url, json={"servings": 4}, headers=owner)
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["servings"] == 4
    assert updated["title"] == "Pho"

    _, stranger = await make_user("stranger@example.com")
    assert (await client.put(url, json={"servings": 1}, headers=stranger)).status_code == 403

    _, admin = await make_user("admin@example.com", role=ADMIN)
    resp = await client.put(url, json={"slug": "pho-ga"}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["slug"] == "pho-ga"

    resp = await client.put(url, json={"slug": "bun-cha"}, headers=owner)
    assert resp.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ("title", "slug", "category_id", "published", "servings"))
async def test_update_rejects_null_fields(client, make_user, field: str) -> None:
    _, owner = await make_user("owner@example.com")
    created = (await client.post("/api/dishes", json=dish("pho"), headers=owner)).json()

    resp = await client.put(f"/api/dishes/{created['id']}", json={field: None}, headers=owner)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid body"
    assert body["issues"][0]["loc"] == [field]

    unchanged = (await client.get(f"/api/dishes/{created['id']}")).json()
    assert unchanged["title"] == "Pho"
    assert unchanged["slug"] == "pho"


@pytest.mark.asyncio
async def test_update_clears_cover(client, make_user) -> None:
    _, owner = await make_user("owner@example.com")
    created = (
        await client.post(
            "/api/dishes", json=dish("pho", cover_image_url="https://img/pho.jpg"), headers=owner
        )
    ).json()

    resp = await client.put(
        f"/api/dishes/{created['id']}", json={"cover_image_url": None}, headers=owner
    )
    assert resp.status_code == 200
    assert resp.json()["cover_image_url"] is None


@pytest.mark.asyncio
async def test_search_repository(db, make_user) -> None:
    owner, _ = await make_user("owner@example.com")
    repo = DishesRepository(db)
    for slug, published in (("pho-bo", True), ("pho-ga", False), ("bun-cha", True)):
        await repo.create(CreateDish(**dish(slug, published=published)), created_by=owner.id)

    found, total = await repo.search(q="PHO")
    assert total == 2
    assert {d.slug for d in found} == {"pho-bo", "pho-ga"}

    found, total = await repo.search(published=True, limit=1)
    assert total == 2
    assert len(found) == 1


@pytest.mark.asyncio
async def test_delete_admin_only(client, make_user) -> None:
    _, owner = await make_user("owner@example.com", role=CHEF)
    created = (await client.post("/api/dishes", json=dish("pho"), headers=owner)).json()
    url = f"/api/dishes/{created['id']}"

    assert (await client.delete(url, headers=owner)).status_code == 403

    _, admin = await make_user("admin@example.com", role=ADMIN)
    resp = await client.delete(url, headers=admin)
    assert resp.status_code == 204
    assert resp.content == b""
    assert (await client.get(url)).status_code == 404


@pytest.mark.asyncio
async def test_suggest(client, db, make_user) -> None:
    category = await CategoriesRepository(db).add(name="Soups", slug="soups", icon="bowl")
    _, headers = await make_user("cook@example.com")
    await client.post(
        "/api/dishes",
        json={**dish("pho-bo", published=True, cover_image_url="https://img/pho.jpg"), "category_id": category},
        headers=headers,
    )
    await client.post("/api/dishes", json=dish("pho-chay"), headers=headers)

    assert (await client.get("/api/dishes/suggest")).json() == []
    resp = await client.get("/api/dishes/suggest", params={"q": "pho"})
    assert resp.json() == [
        {"title": "Pho Bo", "slug": "pho-bo", "image": "https://img/pho.jpg", "category": "Soups"}
    ]


@pytest.mark.asyncio
async def test_categories(db) -> None:
    repo = CategoriesRepository(db)
    await repo.add(name="Soups", slug="soups")
    await repo.add(name="Desserts", slug="desserts", icon="cake")
    assert [c["name"] for c in await repo.by_name()] == ["Desserts", "Soups"]


@pytest.mark.asyncio
async def test_moderation_flow(client, db, make_user) -> None:
    category = await CategoriesRepository(db).add(name="Soups", slug="soups")
    chef, chef_headers = await make_user("chef@example.com", role=CHEF, display_name="Lan")
    first = (
        await client.post(
            "/api/dishes", json={**dish("pho"), "category_id": category}, headers=chef_headers
        )
    ).json()
    second = (await client.post("/api/dishes", json=dish("bun"), headers=chef_headers)).json()
    _, admin = await make_user("admin@example.com", role=ADMIN)

    assert (await client.get("/api/moderation/dishes", headers=chef_headers)).status_code == 403

    body = (await client.get("/api/moderation/dishes", headers=admin)).json()
    assert body["total"] == 2
    assert body["limit"] == 20 and body["offset"] == 0
    item = next(i for i in body["items"] if i["id"] == first["id"])
    assert item["creator"] == {"id": chef.id, "display_name": "Lan", "avatar_url": None}
    assert item["category"]["name"] == "Soups"

    resp = await client.patch(
        f"/api/moderation/dishes/{first['id']}", json={"action": "approve"}, headers=admin
    )
    assert resp.status_code == 200
    approved = resp.json()["item"]
    assert approved["review_status"] == "approved"
    assert approved["published"] is True
    assert approved["review_note"] is None

    resp = await client.patch(
        f"/api/moderation/dishes/{second['id']}",
        json={"action": "reject", "reason": "Blurry photo"},
        headers=admin,
    )
    rejected = resp.json()["item"]
    assert rejected["review_status"] == "rejected"
    assert rejected["published"] is False
    assert rejected["review_note"] == "Blurry photo"

    body = (await client.get("/api/moderation/dishes", headers=admin)).json()
    assert body["total"] == 0

    body = (
        await client.get("/api/moderation/dishes", params={"status": "all", "q": "bun"}, headers=admin)
    ).json()
    assert [i["id"] for i in body["items"]] == [second["id"]]

    resp = await client.patch(
        f"/api/moderation/dishes/{first['id']}", json={"action": "ban"}, headers=admin
    )
    assert resp.status_code == 400
