import logging
import re
from typing import Any

from databases import Database

from marketplace.db import new_id, now_iso, record_to_dict
from marketplace.errors import Conflict, NotFound
from marketplace.models import Dish
from marketplace.schemas import CreateDish, ReviewAction, UpdateDish


logger = logging.getLogger(__name__)


ID_RE = re.compile(
    r"^([0-9a-f]{32}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$",
    re.IGNORECASE,
)

DISH_COLUMNS = (
    "id, category_id, title, slug, cover_image_url, diet, time_minutes, servings, "
    "tips, created_by, published, review_status, review_note, created_at, updated_at"
)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def identifier_column(identifier: str) -> str:
    return "id" if ID_RE.match(identifier) else "slug"


def like(q: str) -> str:
    return f"%{q.lower()}%"


class DishesRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, dish: CreateDish, *, created_by: str) -> Dish:
        if await self.find(dish.slug) is not None:
            raise Conflict(f"Slug {dish.slug} already exists")
        id = new_id()
        now = now_iso()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO dishes
                (id, category_id, title, slug, cover_image_url, diet, time_minutes,
                 servings, tips, created_by, published, review_status,
                 created_at, updated_at)
            VALUES
                (:id, :category_id, :title, :slug, :cover_image_url, :diet,
                 :time_minutes, :servings, :tips, :created_by, :published,
                 :review_status, :now, :now)
            """,
            values={
                **dish.model_dump(),
                "id": id,
                "created_by": created_by,
                "review_status": PENDING,
                "now": now,
            },
        )
        logger.info("Dish %s created by %s", id, created_by)
        return await self.get(id)

    async def find(self, identifier: str) -> Dish | None:
        column = identifier_column(identifier)
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT {DISH_COLUMNS} FROM dishes WHERE {column} = :value",
            values={"value": identifier},
        )
        return None if row is None else Dish.from_row(record_to_dict(row))

    async def get(self, identifier: str) -> Dish:
        dish = await self.find(identifier)
        if dish is None:
            raise NotFound()
        return dish

    async def search(
        self,
        *,
        q: str = "",
        category_id: str | None = None,
        diet: str | None = None,
        published: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Dish], int]:
        clauses: list[str] = []
        values: dict[str, Any] = {}
        if q:
            clauses.append("LOWER(title) LIKE :q")
            values["q"] = like(q)
        if category_id:
            clauses.append("category_id = :category_id")
            values["category_id"] = category_id
        if diet:
            clauses.append("diet = :diet")
            values["diet"] = diet
        if published is not None:
            clauses.append("published = :published")
            values["published"] = published
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT COUNT(*) FROM dishes {where}", values=values
        )
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT {DISH_COLUMNS} FROM dishes {where}
            ORDER BY created_at DESC, id DESC
            LIMIT :limit OFFSET :offset
            """,
            values={**values, "limit": limit, "offset": offset},
        )
        return [Dish.from_row(record_to_dict(r)) for r in rows], int(total or 0)

    async def update(self, dish: Dish, patch: UpdateDish) -> Dish:
        changes = patch.model_dump(exclude_unset=True)
        if "slug" in changes and changes["slug"] != dish.slug:
            if await self.find(changes["slug"]) is not None:
                raise Conflict(f"Slug {changes['slug']} already exists")
        if changes:
            assignments = ", ".join(f"{k} = :{k}" for k in changes)
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                f"UPDATE dishes SET {assignments}, updated_at = :now WHERE id = :id",
                values={**changes, "id": dish.id, "now": now_iso()},
            )
        return await self.get(dish.id)

    async def delete(self, id: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "DELETE FROM dishes WHERE id = :id", values={"id": id}
        )

    async def suggest(self, q: str, *, limit: int = 10) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT d.title, d.slug, d.cover_image_url, c.name AS category
            FROM dishes d LEFT JOIN categories c ON c.id = d.category_id
            WHERE LOWER(d.title) LIKE :q AND d.published = :published
            ORDER BY d.title
            LIMIT :limit
            """,
            values={"q": like(q), "published": True, "limit": limit},
        )
        return [
            {
                "title": r["title"],
                "slug": r["slug"],
                "image": r["cover_image_url"],
                "category": r["category"] or "",
            }
            for r in map(record_to_dict, rows)
        ]

    async def for_review(
        self, *, status: str | None, q: str, limit: int, offset: int
    ) -> tuple[list[dict[str, Any]], int]:
        clauses: list[str] = []
        values: dict[str, Any] = {}
        if status:
            clauses.append("d.review_status = :status")
            values["status"] = status
        if q:
            clauses.append("LOWER(d.title) LIKE :q")
            values["q"] = like(q)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT COUNT(*) FROM dishes d {where}", values=values
        )
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT d.id, d.title, d.slug, d.cover_image_url, d.created_at,
                   d.updated_at, d.published, d.review_status, d.review_note, d.diet,
                   p.id AS creator_id, p.display_name AS creator_name,
                   p.avatar_url AS creator_avatar,
                   c.id AS cat_id, c.name AS cat_name, c.slug AS cat_slug,
                   c.icon AS cat_icon
            FROM dishes d
            LEFT JOIN profiles p ON p.id = d.created_by
            LEFT JOIN categories c ON c.id = d.category_id
            {where}
            ORDER BY d.created_at DESC, d.id DESC
            LIMIT :limit OFFSET :offset
            """,
            values={**values, "limit": limit, "offset": offset},
        )
        items = []
        for r in map(record_to_dict, rows):
            items.append(
                {
                    "id": r["id"],
                    "title": r["title"],
                    "slug": r["slug"],
                    "cover_image_url": r["cover_image_url"],
                    "created_at": r["created_at"],
                    "updated_at": r["updated_at"],
                    "published": bool(r["published"]),
                    "review_status": r["review_status"],
                    "review_note": r["review_note"],
                    "diet": r["diet"],
                    "creator": None
                    if r["creator_id"] is None
                    else {
                        "id": r["creator_id"],
                        "display_name": r["creator_name"],
                        "avatar_url": r["creator_avatar"],
                    },
                    "category": None
                    if r["cat_id"] is None
                    else {
                        "id": r["cat_id"],
                        "name": r["cat_name"],
                        "slug": r["cat_slug"],
                        "icon": r["cat_icon"],
                    },
                }
            )
        return items, int(total or 0)

    async def review(self, id: str, action: ReviewAction) -> Dish:
        if action.action == "approve":
            values = {"status": APPROVED, "published": True, "note": None}
        else:
            values = {"status": REJECTED, "published": False, "note": action.reason}
        dish = await self.get(id)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            UPDATE dishes SET review_status = :status, published = :published,
                review_note = :note, updated_at = :now
            WHERE id = :id
            """,
            values={**values, "id": dish.id, "now": now_iso()},
        )
        logger.info("Dish %s %s", dish.id, values["status"])
        return await self.get(dish.id)


class CategoriesRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, *, name: str, slug: str, icon: str | None = None) -> str:
        id = new_id()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "INSERT INTO categories (id, name, slug, icon) VALUES (:id, :name, :slug, :icon)",
            values={"id": id, "name": name, "slug": slug, "icon": icon},
        )
        return id

    async def by_name(self) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            "SELECT id, name, slug, icon FROM categories ORDER BY name"
        )
        return [record_to_dict(r) for r in rows]
