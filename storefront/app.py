import contextlib
import json
import logging

from databases import Database
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route, WebSocketRoute
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send

from marketplace.assistant import SalesAssistant
from marketplace.certificates import CertificateStorage
from marketplace.db import create_db
from marketplace.errors import StorefrontError
from marketplace.payos import PayOSClient
from marketplace.support import SupportHub
from storefront import auth, pages
from storefront.config import Config
from storefront.logs import setup_logging
from storefront.routes import assistant, dishes, payments, profiles, social, support


logger = logging.getLogger(__name__)


class ApiCORSMiddleware:
    """CORS on the JSON API only."""

    def __init__(self, app: ASGIApp, *, prefix: str, allow_origins: list[str]) -> None:
        self.app = app
        self.prefix = prefix
        self.cors = CORSMiddleware(
            app,
            allow_origins=allow_origins,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
            allow_credentials=True,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(self.prefix):
            await self.cors(scope, receive, send)
        else:
            await self.app(scope, receive, send)


async def storefront_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StorefrontError)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def validation_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ValidationError)
    issues = json.loads(exc.json(include_url=False))
    return JSONResponse({"error": "Invalid body", "issues": issues}, status_code=400)


def routes(config: Config) -> list[Route | WebSocketRoute | Mount]:
    return [
        # pages
        Route("/", pages.homepage),
        Route("/dishes/{slug}", pages.dish_page),
        Route("/chefs", pages.chefs_page),
        Route("/upgrade", pages.upgrade_page),
        Route("/checkout/return", pages.checkout_return),
        Route("/checkout/cancel", pages.checkout_cancel),
        Route("/403", pages.forbidden),
        Route("/wishlist", pages.wishlist),
        Route("/auth/signin", pages.signin_page, methods=["GET", "POST"], name="signin_page"),
        # auth
        Route("/api/auth/signup", auth.signup, methods=["POST"]),
        Route("/api/auth/signin", auth.signin, methods=["POST"]),
        Route("/api/auth/signout", auth.signout, methods=["POST"]),
        Route("/api/auth/get-api-key", auth.get_api_key),
        Route("/api/auth/ensure-admin", auth.ensure_admin, methods=["POST"]),
        # payments
        Route("/api/plans", payments.plans),
        Route("/api/checkout", payments.checkout, methods=["POST"]),
        Route("/api/payos-webhook", payments.payos_webhook, methods=["GET", "POST"]),
        Route("/api/me/plan", payments.me_plan),
        Route("/api/me/transactions", payments.me_transactions),
        # dishes
        Route("/api/dishes", dishes.dishes, methods=["GET", "POST"]),
        Route("/api/dishes/suggest", dishes.suggest),
        Route("/api/dishes/{id}", dishes.dish_detail, methods=["GET", "PUT", "DELETE"]),
        Route(
            "/api/dishes/{id}/premium",
            dishes.premium,
            methods=["GET", "POST", "PATCH", "DELETE"],
        ),
        Route("/api/moderation/dishes", dishes.moderation_list),
        Route("/api/moderation/dishes/{id}", dishes.moderation_review, methods=["PATCH"]),
        # chefs, comments, ratings
        Route("/api/chefs", social.chefs),
        Route("/api/chefs/{id}", social.chef_detail),
        Route("/api/chefs/{id}/follow", social.follow, methods=["GET", "POST", "DELETE"]),
        Route("/api/comments", social.comments, methods=["GET", "POST"]),
        Route("/api/comments/{id}", social.comment_detail, methods=["DELETE"]),
        Route("/api/ratings", social.ratings, methods=["GET", "POST"]),
        Route("/api/ratings/{id}", social.rating_detail, methods=["PATCH", "DELETE"]),
        # profiles and certificates
        Route("/api/me", profiles.me),
        Route("/api/profiles/me", profiles.update_me, methods=["PUT"]),
        Route(
            "/api/profiles/me/certificates",
            profiles.submit_certificates,
            methods=["POST"],
        ),
        Route("/api/profiles/{id}", profiles.public_profile),
        Route("/api/certificates/me", profiles.my_certificates),
        Route("/api/certificates/{id}", profiles.certificate_detail, methods=["DELETE"]),
        Route(
            "/api/certificates/{id}/replace",
            profiles.replace_certificate,
            methods=["POST"],
        ),
        Route("/api/admin/certificates/pending", profiles.pending_certificates),
        Route(
            "/api/admin/certificates/{id}/verify",
            profiles.verify_certificate,
            methods=["POST"],
        ),
        Route("/storage/certificates/{token}", profiles.certificate_file),
        # support chat
        Route(
            "/api/support/{session_id}/messages",
            support.messages,
            methods=["GET", "POST"],
        ),
        Route("/api/admin/support/sessions", support.sessions),
        WebSocketRoute("/ws/support/{session_id}", support.support_socket),
        # sales assistant
        Route("/api/ai/chat", assistant.chat, methods=["POST"]),
        Route("/api/ai/log", assistant.log, methods=["POST"]),
        Route("/api/ai/rate", assistant.rate, methods=["POST"]),
        Mount(
            "/assets",
            app=StaticFiles(directory=config.assets_dir, check_dir=False),
            name="assets",
        ),
    ]


def create_app(
    config: Config | None = None,
    *,
    database: Database | None = None,
    payos: PayOSClient | None = None,
    assistant: SalesAssistant | None = None,
) -> Starlette:
    config = Config() if config is None else config
    setup_logging(config)
    db = Database(config.db_url) if database is None else database

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await db.connect()
        await create_db(db)
        logger.info("Connected to %s", config.db_url)
        yield
        await app.state.payos.close()
        await db.disconnect()

    app = Starlette(
        debug=config.debug,
        routes=routes(config),
        middleware=[
            Middleware(
                ApiCORSMiddleware, prefix="/api/", allow_origins=config.allowed_origins
            ),
            Middleware(SessionMiddleware, secret_key=config.secret_key),
            Middleware(AuthenticationMiddleware, backend=auth.SessionOrKeyBackend()),
            Middleware(auth.ProtectedPagesMiddleware, prefixes=config.protected_prefixes),
        ],
        exception_handlers={
            StorefrontError: storefront_error,
            ValidationError: validation_error,
        },
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.db = db
    app.state.templates = Environment(
        loader=FileSystemLoader(config.html_dir),
        autoescape=select_autoescape(),
    )
    app.state.payos = (
        PayOSClient(
            client_id=config.payos_client_id,
            api_key=config.payos_api_key,
            checksum_key=config.payos_checksum_key,
            base_url=config.payos_base_url,
        )
        if payos is None
        else payos
    )
    app.state.assistant = (
        SalesAssistant(
            api_key=config.openai_api_key,
            models=config.assistant_models,
            store_name=config.store_name,
        )
        if assistant is None
        else assistant
    )
    app.state.storage = CertificateStorage(
        config.storage_dir, secret_key=config.secret_key, ttl=config.signed_url_ttl
    )
    app.state.hub = SupportHub()
    return app
