"""Chefs, follows, comments and ratings."""

import logging
from typing import Any

from databases import Database

from marketplace.db import new_id, now_iso, record_to_dict
from marketplace.errors import BadRequest, Conflict, Forbidden, NotFound
from marketplace.models import CHEF


logger = logging.getLogger(__name__)


MAX_CONTENT = 5000

CHEF_OVERVIEW = """
    SELECT p.id, p.display_name, p.avatar_url, p.bio,
        (SELECT COUNT(*) FROM dishes d WHERE d.created_by = p.id) AS dish_count,
        (SELECT COALESCE(AVG(r.stars), 0) FROM ratings r
            JOIN dishes d ON d.id = r.dish_id WHERE d.created_by = p.id) AS rating_avg,
        (SELECT COUNT(*) FROM ratings r
            JOIN dishes d ON d.id = r.dish_id WHERE d.created_by = p.id) AS rating_count,
        (SELECT COUNT(*) FROM follows f WHERE f.followed_id = p.id) AS followers
    FROM profiles p
"""


def _chef(row: dict[str, Any]) -> dict[str, Any]:
    return {
        **row,
        "rating_avg": round(float(row["rating_avg"] or 0), 2),
        "dish_count": int(row["dish_count"] or 0),
        "rating_count": int(row["rating_count"] or 0),
        "followers": int(row["followers"] or 0),
    }


def keyset_filter(
    cursor: str | None, cursor_id: str | None, *, alias: str
) -> tuple[str, dict[str, Any]]:
    """Rows strictly before (cursor, cursor_id) in created_at desc, id desc order."""
    if not cursor:
        return "", {}
    if not cursor_id:
        return f" AND {alias}.created_at < :cursor", {"cursor": cursor}
    return (
        f" AND ({alias}.created_at < :cursor"
        f" OR ({alias}.created_at = :cursor AND {alias}.id < :cursor_id))",
        {"cursor": cursor, "cursor_id": cursor_id},
    )


def page(items: list[dict[str, Any]], limit: int) -> dict[str, Any]:
    has_more = len(items) > limit
    items = items[:limit]
    last = items[-1] if has_more and items else None
    return {
        "items": items,
        "nextCursor": last["created_at"] if last else None,
        "nextCursorId": last["id"] if last else None,
        "hasMore": has_more,
    }


class ChefsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def overview(
        self, *, q: str = "", page: int = 1, limit: int = 12
    ) -> tuple[list[dict[str, Any]], int]:
        where = "WHERE p.role = :role"
        values: dict[str, Any] = {"role": CHEF}
        if q:
            where += " AND LOWER(p.display_name) LIKE :q"
            values["q"] = f"%{q.lower()}%"
        total = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT COUNT(*) FROM profiles p {where}", values=values
        )
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            {CHEF_OVERVIEW} {where}
            ORDER BY rating_avg DESC, p.id
            LIMIT :limit OFFSET :offset
            """,
            values={**values, "limit": limit, "offset": (page - 1) * limit},
        )
        return [_chef(record_to_dict(r)) for r in rows], int(total or 0)

    async def get(self, id: str) -> dict[str, Any]:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            f"{CHEF_OVERVIEW} WHERE p.role = :role AND p.id = :id",
            values={"role": CHEF, "id": id},
        )
        if row is None:
            raise NotFound("Chef not found")
        return _chef(record_to_dict(row))


class FollowsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def follow(self, follower_id: str, followed_id: str) -> None:
        if follower_id == followed_id:
            raise BadRequest("You cannot follow yourself")
        if await self.is_following(follower_id, followed_id):
            return
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO follows (follower_id, followed_id, created_at)
            VALUES (:follower_id, :followed_id, :now)
            """,
            values={
                "follower_id": follower_id,
                "followed_id": followed_id,
                "now": now_iso(),
            },
        )

    async def unfollow(self, follower_id: str, followed_id: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            DELETE FROM follows
            WHERE follower_id = :follower_id AND followed_id = :followed_id
            """,
            values={"follower_id": follower_id, "followed_id": followed_id},
        )

    async def is_following(self, follower_id: str, followed_id: str) -> bool:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT 1 FROM follows
            WHERE follower_id = :follower_id AND followed_id = :followed_id
            """,
            values={"follower_id": follower_id, "followed_id": followed_id},
        )
        return row is not None

    async def counts(self, user_id: str) -> tuple[int, int]:
        followers = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            "SELECT COUNT(*) FROM follows WHERE followed_id = :id",
            values={"id": user_id},
        )
        following = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            "SELECT COUNT(*) FROM follows WHERE follower_id = :id",
            values={"id": user_id},
        )
        return int(followers or 0), int(following or 0)

    async def status(self, chef_id: str, *, current_user_id: str | None) -> dict[str, Any]:
        followers, following = await self.counts(chef_id)
        is_following = (
            current_user_id is not None
            and await self.is_following(current_user_id, chef_id)
        )
        return {
            "chefId": chef_id,
            "followers": followers,
            "following": following,
            "isFollowing": is_following,
            "currentUserId": current_user_id,
        }


class CommentsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    @staticmethod
    def _item(row: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": row["id"],
            "content": row["content"],
            "created_at": row["created_at"],
            "user_id": row["user_id"],
            "user": None
            if row["profile_id"] is None
            else {
                "id": row["profile_id"],
                "full_name": row["display_name"],
                "avatar_url": row["avatar_url"],
            },
        }

    async def for_dish(
        self,
        dish_id: str,
        *,
        limit: int = 10,
        cursor: str | None = None,
        cursor_id: str | None = None,
    ) -> dict[str, Any]:
        seek, values = keyset_filter(cursor, cursor_id, alias="c")
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT c.id, c.content, c.created_at, c.user_id,
                   p.id AS profile_id, p.display_name, p.avatar_url
            FROM comments c LEFT JOIN profiles p ON p.id = c.user_id
            WHERE c.dish_id = :dish_id{seek}
            ORDER BY c.created_at DESC, c.id DESC
            LIMIT :limit
            """,
            values={**values, "dish_id": dish_id, "limit": limit + 1},
        )
        return page([self._item(record_to_dict(r)) for r in rows], limit)

    async def get(self, id: str) -> dict[str, Any]:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT c.id, c.content, c.created_at, c.user_id,
                   p.id AS profile_id, p.display_name, p.avatar_url
            FROM comments c LEFT JOIN profiles p ON p.id = c.user_id
            WHERE c.id = :id
            """,
            values={"id": id},
        )
        if row is None:
            raise NotFound("Comment not found")
        return self._item(record_to_dict(row))

    async def add(self, *, dish_id: str, user_id: str, content: str) -> dict[str, Any]:
        content = content.strip()
        if not content:
            raise BadRequest("Content cannot be empty")
        if len(content) > MAX_CONTENT:
            raise BadRequest("Content too long")
        duplicate = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT id FROM comments
            WHERE dish_id = :dish_id AND user_id = :user_id AND content = :content
            """,
            values={"dish_id": dish_id, "user_id": user_id, "content": content},
        )
        if duplicate is not None:
            raise Conflict("You already posted this comment on this dish")
        id = new_id()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO comments (id, dish_id, user_id, content, created_at)
            VALUES (:id, :dish_id, :user_id, :content, :now)
            """,
            values={
                "id": id,
                "dish_id": dish_id,
                "user_id": user_id,
                "content": content,
                "now": now_iso(),
            },
        )
        return await self.get(id)

    async def delete(self, id: str, *, user_id: str, is_admin: bool) -> None:
        comment = await self.get(id)
        if comment["user_id"] != user_id and not is_admin:
            raise Forbidden()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "DELETE FROM comments WHERE id = :id", values={"id": id}
        )


def parse_stars(value: Any) -> int:
    try:
        stars = float(value)
    except (TypeError, ValueError):
        raise BadRequest("Stars must be 1..5") from None
    if not stars.is_integer() or not 1 <= stars <= 5:
        raise BadRequest("Stars must be 1..5")
    return int(stars)


def clean_comment(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


class RatingsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    @staticmethod
    def _item(row: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": row["id"],
            "dish_id": row["dish_id"],
            "user_id": row["user_id"],
            "stars": row["stars"],
            "comment": row["comment"],
            "created_at": row["created_at"],
            "user": None
            if row["profile_id"] is None
            else {
                "id": row["profile_id"],
                "display_name": row["display_name"],
                "avatar_url": row["avatar_url"],
            },
        }

    async def for_dish(
        self,
        dish_id: str,
        *,
        limit: int = 10,
        cursor: str | None = None,
        cursor_id: str | None = None,
    ) -> dict[str, Any]:
        seek, values = keyset_filter(cursor, cursor_id, alias="r")
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT r.id, r.dish_id, r.user_id, r.stars, r.comment, r.created_at,
                   p.id AS profile_id, p.display_name, p.avatar_url
            FROM ratings r LEFT JOIN profiles p ON p.id = r.user_id
            WHERE r.dish_id = :dish_id{seek}
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT :limit
            """,
            values={**values, "dish_id": dish_id, "limit": limit + 1},
        )
        return page([self._item(record_to_dict(r)) for r in rows], limit)

    async def find(self, id: str) -> dict[str, Any] | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT r.id, r.dish_id, r.user_id, r.stars, r.comment, r.created_at,
                   p.id AS profile_id, p.display_name, p.avatar_url
            FROM ratings r LEFT JOIN profiles p ON p.id = r.user_id
            WHERE r.id = :id
            """,
            values={"id": id},
        )
        return None if row is None else self._item(record_to_dict(row))

    async def upsert(
        self, *, dish_id: str, user_id: str, stars: int, comment: str | None
    ) -> dict[str, Any]:
        now = now_iso()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO ratings (id, dish_id, user_id, stars, comment, created_at, updated_at)
            VALUES (:id, :dish_id, :user_id, :stars, :comment, :now, :now)
            ON CONFLICT (dish_id, user_id) DO UPDATE SET
                stars = excluded.stars,
                comment = excluded.comment,
                updated_at = excluded.updated_at
            """,
            values={
                "id": new_id(),
                "dish_id": dish_id,
                "user_id": user_id,
                "stars": stars,
                "comment": comment,
                "now": now,
            },
        )
        id = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            "SELECT id FROM ratings WHERE dish_id = :dish_id AND user_id = :user_id",
            values={"dish_id": dish_id, "user_id": user_id},
        )
        rating = await self.find(id)
        assert rating is not None
        return rating

    async def _owned(self, id: str, user_id: str) -> dict[str, Any]:
        rating = await self.find(id)
        if rating is None or rating["user_id"] != user_id:
            raise Forbidden()
        return rating

    async def update(self, id: str, *, user_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        if patch.get("stars") is not None:
            changes["stars"] = parse_stars(patch["stars"])
        if "comment" in patch:
            changes["comment"] = clean_comment(patch["comment"])
        if not changes:
            raise BadRequest("Nothing to update")
        await self._owned(id, user_id)
        assignments = ", ".join(f"{k} = :{k}" for k in changes)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            f"UPDATE ratings SET {assignments}, updated_at = :now WHERE id = :id",
            values={**changes, "id": id, "now": now_iso()},
        )
        rating = await self.find(id)
        assert rating is not None
        return rating

    async def delete(self, id: str, *, user_id: str) -> None:
        await self._owned(id, user_id)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "DELETE FROM ratings WHERE id = :id", values={"id": id}
        )
