import functools
import json
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from marketplace.errors import BadRequest


JSONBody = dict[str, Any] | list[Any] | None


def aHTMLResponse(route: Callable[..., Awaitable[str | tuple[str, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> HTMLResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            html, code = resp, 200
        else:
            html, code = resp
        return HTMLResponse(html, status_code=code)

    return wrapper


def aJSONResponse(route: Callable[..., Awaitable[JSONBody | tuple[JSONBody, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> Response:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            body, code = resp, 200
        else:
            body, code = resp
        if body is None:
            return Response(status_code=code)
        return JSONResponse(body, status_code=code)

    return wrapper


async def json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadRequest("Invalid JSON") from None
    if not isinstance(body, dict):
        raise BadRequest("Invalid JSON")
    return body  # pyright: ignore[reportUnknownVariableType]


def query_int(
    request: Request, name: str, default: int, *, lo: int, hi: int | None = None
) -> int:
    raw = request.query_params.get(name)
    try:
        value = default if raw is None or raw == "" else int(raw)
    except ValueError:
        value = default
    value = max(lo, value)
    return value if hi is None else min(hi, value)
