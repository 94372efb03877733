"""Support chat: stored conversations and live fan-out to connected sockets."""

import asyncio
from collections import defaultdict
import logging
from typing import Any

from databases import Database

from marketplace.db import new_id, now_iso, record_to_dict
from marketplace.models import ADMIN, SupportMessage


logger = logging.getLogger(__name__)


USER = "user"
QUEUE_SIZE = 100


class SupportHub:
    """In-process publish/subscribe keyed by session id.

    Every subscriber owns a bounded queue. A subscriber that falls behind
    loses new messages rather than blocking the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = defaultdict(set)

    def subscribe(self, session_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._subscribers[session_id].add(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._subscribers.get(session_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[session_id]

    def subscribers(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    async def publish(self, session_id: str, message: dict[str, Any]) -> int:
        delivered = 0
        for queue in list(self._subscribers.get(session_id, ())):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping support message for a slow subscriber on %s", session_id)
                continue
            delivered += 1
        return delivered


class SupportRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self, *, session_id: str, user_id: str | None, role: str, text: str
    ) -> SupportMessage:
        message = SupportMessage(
            id=new_id(),
            session_id=session_id,
            user_id=user_id,
            role=role,
            text=text,
            created_at=now_iso(),
        )
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO support_messages (id, session_id, user_id, role, text, created_at)
            VALUES (:id, :session_id, :user_id, :role, :text, :created_at)
            """,
            values=message.to_dict(),
        )
        return message

    async def history(self, session_id: str, *, limit: int = 500) -> list[SupportMessage]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT id, session_id, user_id, role, text, created_at
            FROM support_messages WHERE session_id = :session_id
            ORDER BY created_at ASC, id ASC
            LIMIT :limit
            """,
            values={"session_id": session_id, "limit": limit},
        )
        return [SupportMessage.from_row(record_to_dict(r)) for r in rows]

    async def sessions(self) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT m.session_id,
                MAX(m.created_at) AS last_message_at,
                COUNT(*) AS message_count,
                (SELECT p.email FROM support_messages u
                    JOIN profiles p ON p.id = u.user_id
                    WHERE u.session_id = m.session_id AND u.role = :user_role
                    ORDER BY u.created_at LIMIT 1) AS user_email
            FROM support_messages m
            GROUP BY m.session_id
            ORDER BY last_message_at DESC
            """,
            values={"user_role": USER},
        )
        return [record_to_dict(r) for r in rows]


async def post_message(
    session_id: str,
    *,
    text: str,
    user_id: str | None,
    user_role: str | None,
    repository: SupportRepository,
    hub: SupportHub,
) -> SupportMessage:
    role = ADMIN if user_role == ADMIN else USER
    message = await repository.add(
        session_id=session_id, user_id=user_id, role=role, text=text
    )
    delivered = await hub.publish(session_id, message.to_dict())
    logger.debug("Support message %s delivered to %d socket(s)", message.id, delivered)
    return message
