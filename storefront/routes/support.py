import asyncio
import json
import logging

from starlette.requests import Request
from starlette.websockets import WebSocket, WebSocketDisconnect

from marketplace.schemas import SupportMessageInput
from marketplace.support import SupportHub, SupportRepository, post_message
from storefront.auth import current_user, require_admin
from storefront.responses import aJSONResponse, json_body


logger = logging.getLogger(__name__)


MAX_TEXT = 5000


@aJSONResponse
async def messages(request: Request):
    session_id = request.path_params["session_id"]
    repo = SupportRepository(request.app.state.db)
    if request.method == "GET":
        history = await repo.history(session_id)
        return {"items": [m.to_dict() for m in history]}

    body = SupportMessageInput.model_validate(await json_body(request))
    user = current_user(request)
    message = await post_message(
        session_id,
        text=body.text,
        user_id=None if user is None else user.id,
        user_role=None if user is None else user.role,
        repository=repo,
        hub=request.app.state.hub,
    )
    return {"item": message.to_dict()}, 201


@aJSONResponse
async def sessions(request: Request):
    require_admin(request)
    return {"items": await SupportRepository(request.app.state.db).sessions()}


def _socket_text(raw: str) -> str:
    """Accept either `{"text": ...}` JSON or plain text frames."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip()
    if isinstance(data, dict):
        return str(data.get("text") or "").strip()  # pyright: ignore[reportUnknownMemberType, reportUnknownArgumentType]
    return raw.strip()


async def _stopped(task: asyncio.Task[None]) -> None:
    try:
        await task
    except asyncio.CancelledError:
        pass
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info("Support socket sender stopped: %r", e)


async def support_socket(ws: WebSocket) -> None:
    session_id = ws.path_params["session_id"]
    hub: SupportHub = ws.app.state.hub
    repo = SupportRepository(ws.app.state.db)
    user = current_user(ws)

    # subscribed before accept so nothing published after the handshake is missed
    queue = hub.subscribe(session_id)

    async def forward() -> None:
        while True:
            await ws.send_json(await queue.get())

    try:
        await ws.accept()
        logger.info("Support socket opened on %s", session_id)
        sender = asyncio.create_task(forward())
        try:
            while True:
                text = _socket_text(await ws.receive_text())
                if not text or len(text) > MAX_TEXT:
                    await ws.send_json({"error": "Invalid message"})
                    continue
                await post_message(
                    session_id,
                    text=text,
                    user_id=None if user is None else user.id,
                    user_role=None if user is None else user.role,
                    repository=repo,
                    hub=hub,
                )
        finally:
            sender.cancel()
            await _stopped(sender)
    except WebSocketDisconnect:
        logger.info("Support socket closed on %s", session_id)
    finally:
        hub.unsubscribe(session_id, queue)
