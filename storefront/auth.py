"""Who is calling: session cookie or bearer API key, plus the role guards."""

import logging
from typing import Any
from urllib.parse import urlencode

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    BaseUser,
    UnauthenticatedUser,
)
from starlette.requests import HTTPConnection, Request
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from marketplace.errors import Forbidden, Unauthorized
from marketplace.models import ADMIN, CHEF
from marketplace.profiles import (
    ProfilesRepository,
    authenticate,
    ensure_admin as promote_admin,
    signup as create_account,
)
from marketplace.schemas import Signin, Signup
from storefront.config import Config
from storefront.responses import aJSONResponse, json_body


logger = logging.getLogger(__name__)


API_KEY_SALT = "api-key"
SIGNIN_PATH = "/auth/signin"


class AuthenticatedUser(BaseUser):
    def __init__(self, id: str, email: str, role: str) -> None:
        self.id = id
        self.email = email
        self.role = role

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.email

    @property
    def identity(self) -> str:
        return self.id

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def api_key_serializer(config: Config) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.secret_key, salt=API_KEY_SALT)


def issue_api_key(user_id: str, config: Config) -> str:
    return api_key_serializer(config).dumps(user_id)


def read_api_key(key: str, config: Config) -> str | None:
    try:
        return api_key_serializer(config).loads(key, max_age=config.api_key_ttl)
    except SignatureExpired:
        logger.info("Rejected an expired API key")
        return None
    except BadSignature:
        return None


class SessionOrKeyBackend(AuthenticationBackend):
    """A bearer API key wins over the session cookie."""

    async def authenticate(self, conn: HTTPConnection):
        config: Config = conn.app.state.config
        user_id: str | None = None

        auth = conn.headers.get("authorization", "")
        scheme, _, key = auth.partition(" ")
        if scheme.lower() == "bearer" and key:
            user_id = read_api_key(key.strip(), config)
        elif "session" in conn.scope:
            user_id = conn.session.get("user_id")

        if not user_id:
            return None
        profile = await ProfilesRepository(conn.app.state.db).find(user_id)
        if profile is None:
            return None
        return (
            AuthCredentials(["authenticated", profile.role]),
            AuthenticatedUser(profile.id, profile.email, profile.role),
        )


def current_user(conn: HTTPConnection) -> AuthenticatedUser | None:
    user = conn.scope.get("user")
    return user if isinstance(user, AuthenticatedUser) else None


def require_user(conn: HTTPConnection) -> AuthenticatedUser:
    user = current_user(conn)
    if user is None:
        raise Unauthorized()
    return user


def require_admin(conn: HTTPConnection) -> AuthenticatedUser:
    user = require_user(conn)
    if user.role != ADMIN:
        raise Forbidden()
    return user


def require_chef_or_admin(conn: HTTPConnection) -> AuthenticatedUser:
    user = require_user(conn)
    if user.role not in (CHEF, ADMIN):
        raise Forbidden()
    return user


def ensure_owner_or_admin(user: AuthenticatedUser, owner_id: str | None) -> None:
    if user.role != ADMIN and user.id != owner_id:
        raise Forbidden()


class ProtectedPagesMiddleware:
    """Send anonymous visitors of protected pages to the sign-in page."""

    def __init__(self, app: ASGIApp, *, prefixes: list[str]) -> None:
        self.app = app
        self.prefixes = tuple(prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(self.prefixes):
            user = scope.get("user")
            if user is None or isinstance(user, UnauthenticatedUser):
                request = Request(scope)
                next_url = request.url.path
                if request.url.query:
                    next_url += f"?{request.url.query}"
                response = RedirectResponse(
                    f"{SIGNIN_PATH}?{urlencode({'next': next_url})}", status_code=303
                )
                await response(scope, receive, send)
                return
        await self.app(scope, receive, send)


@aJSONResponse
async def signup(request: Request):
    body = Signup.model_validate(await json_body(request))
    profile = await create_account(
        email=body.email,
        password=body.password,
        display_name=body.display_name,
        repository=ProfilesRepository(request.app.state.db),
    )
    request.session["user_id"] = profile.id
    return profile.to_private_dict(), 201


@aJSONResponse
async def signin(request: Request):
    body = Signin.model_validate(await json_body(request))
    profile = await authenticate(
        email=body.email,
        password=body.password,
        repository=ProfilesRepository(request.app.state.db),
    )
    request.session["user_id"] = profile.id
    logger.info("Signed in %s", profile.id)
    return profile.to_private_dict()


@aJSONResponse
async def signout(request: Request):
    request.session.clear()
    return {"ok": True}


@aJSONResponse
async def get_api_key(request: Request):
    user = require_user(request)
    config: Config = request.app.state.config
    return {
        "apiKey": issue_api_key(user.id, config),
        "userId": user.id,
        "expiresIn": config.api_key_ttl,
    }


@aJSONResponse
async def ensure_admin(request: Request) -> dict[str, Any]:
    user = require_user(request)
    config: Config = request.app.state.config
    repo = ProfilesRepository(request.app.state.db)
    await promote_admin(
        await repo.get(user.id),
        admin_emails=config.admin_email_set(),
        repository=repo,
    )
    return {"ok": True}
