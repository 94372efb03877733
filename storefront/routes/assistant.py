from collections.abc import AsyncIterator
import json
import logging
from typing import Any

import openai
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from marketplace.assistant import ChatLogsRepository, SalesAssistant
from marketplace.errors import StorefrontError
from storefront.responses import aJSONResponse, json_body


logger = logging.getLogger(__name__)


async def _log_best_effort(logs: ChatLogsRepository, **fields: Any) -> None:
    try:
        await logs.add(**fields)
    except Exception:
        logger.exception("Could not store %s chat message", fields.get("role"))


async def chat(request: Request) -> Response:
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    prompt = body.get("prompt") if isinstance(body, dict) else None
    if not prompt or not isinstance(prompt, str):
        return PlainTextResponse("Missing 'prompt'", status_code=400)
    assert isinstance(body, dict)

    session_id = body.get("sessionId")
    user_id = body.get("userId")
    logs = ChatLogsRepository(request.app.state.db)
    await _log_best_effort(
        logs,
        role="user",
        text=prompt,
        session_id=session_id,
        user_id=user_id,
        meta={"source": "chat_api"},
    )

    assistant: SalesAssistant = request.app.state.assistant
    try:
        model, parts = await assistant.stream(prompt, body.get("history"))
    except (StorefrontError, openai.OpenAIError) as e:
        logger.error("Assistant unavailable: %s", e)
        return PlainTextResponse(str(e), status_code=500)

    async def reply() -> AsyncIterator[str]:
        text = ""
        try:
            async for part in parts:
                text += part
                yield part
        except openai.OpenAIError as e:
            err = f"\n[AI error] {e}"
            text += err
            yield err
        await _log_best_effort(
            logs,
            role="assistant",
            text=text or "(empty)",
            session_id=session_id,
            user_id=user_id,
            meta={"model": model},
        )

    return StreamingResponse(
        reply(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache, no-transform", "X-Model-Used": model},
    )


@aJSONResponse
async def log(request: Request):
    body = await json_body(request)
    await ChatLogsRepository(request.app.state.db).add(
        role=body.get("role") or "",
        text=body.get("text") or "",
        session_id=body.get("sessionId"),
        user_id=body.get("userId"),
        meta=body.get("meta"),
    )
    return {"ok": True}


@aJSONResponse
async def rate(request: Request):
    body = await json_body(request)
    await ChatLogsRepository(request.app.state.db).rate(
        message_id=body.get("messageId") or "",
        rating=body.get("rating") or "",
        text=body.get("text") or "",
        user_id=body.get("userId"),
    )
    return {"ok": True}
