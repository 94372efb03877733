from collections.abc import AsyncIterator
import logging
from typing import Any

from databases import Database
import openai
from openai.types.chat import ChatCompletionMessageParam

from marketplace.db import dumps, new_id, now_iso, record_to_dict
from marketplace.errors import BadRequest, ConfigError
from marketplace.prompts import SALES_SYSTEM_PROMPT, render_prompt


logger = logging.getLogger(__name__)


ROLES = ("user", "assistant")
RATINGS = ("up", "down")


def history_messages(history: Any) -> list[ChatCompletionMessageParam]:
    """Keep well-formed user/assistant turns, drop everything else."""
    if not isinstance(history, list):
        return []
    messages: list[ChatCompletionMessageParam] = []
    for turn in history:  # pyright: ignore[reportUnknownVariableType]
        if not isinstance(turn, dict):
            continue
        role, text = turn.get("role"), turn.get("text")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
        if isinstance(text, str) and role in ROLES:
            messages.append({"role": role, "content": text})  # pyright: ignore[reportArgumentType]
    return messages


class SalesAssistant:
    def __init__(
        self,
        openai_client: openai.AsyncClient | None = None,
        *,
        api_key: str | None = None,
        models: list[str],
        store_name: str,
    ) -> None:
        self._openai_client = openai_client
        self.api_key = api_key
        self.models = models
        self.store_name = store_name

    @property
    def openai_client(self) -> openai.AsyncClient:
        if self._openai_client is None:
            if not self.api_key:
                raise ConfigError("Server missing OPENAI_API_KEY")
            self._openai_client = openai.AsyncClient(api_key=self.api_key)
        return self._openai_client

    def system_prompt(self) -> str:
        return render_prompt(SALES_SYSTEM_PROMPT, {"STORE_NAME": self.store_name})

    async def stream(self, prompt: str, history: Any = None) -> tuple[str, AsyncIterator[str]]:
        """Open a streamed reply on the first model the provider knows about."""
        messages: list[ChatCompletionMessageParam] = [
            {"role": "system", "content": self.system_prompt()},
            *history_messages(history),
            {"role": "user", "content": prompt},
        ]
        last_error: Exception | None = None
        for model in self.models:
            try:
                response = await self.openai_client.chat.completions.create(
                    model=model,
                    messages=messages,
                    stream=True,
                )
            except openai.NotFoundError as e:
                logger.warning("Model %s unavailable, trying the next one", model)
                last_error = e
                continue
            return model, self._parts(response)
        raise last_error or ConfigError("No available model")

    @staticmethod
    async def _parts(response: Any) -> AsyncIterator[str]:
        async for chunk in response:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


class ChatLogsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self,
        *,
        role: str,
        text: str,
        session_id: str | None = None,
        user_id: str | None = None,
        meta: Any = None,
    ) -> str:
        if not role or not text:
            raise BadRequest("Missing role/text")
        id = new_id()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO ai_chat_logs (id, user_id, session_id, role, text, meta, created_at)
            VALUES (:id, :user_id, :session_id, :role, :text, :meta, :now)
            """,
            values={
                "id": id,
                "user_id": user_id,
                "session_id": session_id,
                "role": role,
                "text": text,
                "meta": dumps(meta),
                "now": now_iso(),
            },
        )
        return id

    async def rate(
        self, *, message_id: str, rating: str, text: str, user_id: str | None = None
    ) -> str:
        if not message_id or not rating or not text:
            raise BadRequest("Missing fields")
        if rating not in RATINGS:
            raise BadRequest("Invalid rating")
        id = new_id()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO ai_message_ratings (id, message_local_id, rating, text, user_id, created_at)
            VALUES (:id, :message_id, :rating, :text, :user_id, :now)
            """,
            values={
                "id": id,
                "message_id": message_id,
                "rating": rating,
                "text": text,
                "user_id": user_id,
                "now": now_iso(),
            },
        )
        return id

    async def for_session(self, session_id: str) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            """
            SELECT id, user_id, session_id, role, text, meta, created_at
            FROM ai_chat_logs WHERE session_id = :session_id
            ORDER BY created_at
            """,
            values={"session_id": session_id},
        )
        return [record_to_dict(r) for r in rows]
