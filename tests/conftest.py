import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any, AsyncIterator

from databases import Database
import httpx
import openai
import pytest
import pytest_asyncio
from werkzeug.security import generate_password_hash

from marketplace.assistant import SalesAssistant
from marketplace.db import create_db
from marketplace.models import USER, Plan, Profile
from marketplace.payments import PlansRepository
from marketplace.payos import PayOSClient
from marketplace.profiles import ProfilesRepository
from storefront.app import create_app
from storefront.auth import issue_api_key
from storefront.config import Config


ROOT = Path(__file__).parent.parent
CHECKSUM_KEY = "test-checksum-key"
PASSWORD = "password123"


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        html_dir=ROOT / "assets" / "html",
        assets_dir=ROOT / "assets",
        storage_dir=tmp_path / "storage",
        base_url="http://test",
        secret_key="test-secret",
        admin_emails="boss@example.com, Owner@Example.com",
        allowed_origins=["http://localhost:8081"],
        payos_client_id="client-id",
        payos_api_key="api-key",
        payos_checksum_key=CHECKSUM_KEY,
        payos_base_url="https://payos.test",
        assistant_models=["missing-model", "good-model"],
    )


@pytest_asyncio.fixture
async def db(config: Config) -> AsyncIterator[Database]:
    database = Database(config.db_url)
    await database.connect()
    await create_db(database)
    yield database
    await database.disconnect()


class PayOSRecorder:
    """Answers payment-link requests like PayOS does and remembers them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.payloads: list[dict[str, Any]] = []
        self.status_code = 200
        self.reply: dict[str, Any] = {
            "code": "00",
            "desc": "success",
            "data": {
                "checkoutUrl": "https://pay.payos.test/web/abc",
                "qrCode": "000201010212",
                "paymentLinkId": "link-123",
            },
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.payloads.append(json.loads(request.content))
        return httpx.Response(self.status_code, json=self.reply)


@pytest.fixture
def payos_gateway() -> PayOSRecorder:
    return PayOSRecorder()


@pytest.fixture
def payos(config: Config, payos_gateway: PayOSRecorder) -> PayOSClient:
    return PayOSClient(
        client_id=config.payos_client_id,
        api_key=config.payos_api_key,
        checksum_key=config.payos_checksum_key,
        http_client=httpx.AsyncClient(
            base_url=config.payos_base_url,
            transport=httpx.MockTransport(payos_gateway),
        ),
    )


def not_found(model: str) -> openai.NotFoundError:
    return openai.NotFoundError(
        f"The model `{model}` does not exist",
        response=httpx.Response(
            404, request=httpx.Request("POST", "https://api.openai.test/v1/chat")
        ),
        body=None,
    )


def chunk(text: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class StubCompletions:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.replies: dict[str, list[str] | Exception] = {"good-model": ["Hello", " runner"]}
        self.fail_midway: Exception | None = None

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        reply = self.replies.get(kwargs["model"])
        if reply is None:
            raise not_found(kwargs["model"])
        if isinstance(reply, Exception):
            raise reply
        return self._stream(reply)

    async def _stream(self, parts: list[str]) -> AsyncIterator[SimpleNamespace]:
        for part in parts:
            yield chunk(part)
        if self.fail_midway is not None:
            raise self.fail_midway


@pytest.fixture
def completions() -> StubCompletions:
    return StubCompletions()


@pytest.fixture
def assistant(config: Config, completions: StubCompletions) -> SalesAssistant:
    stub = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return SalesAssistant(
        stub,  # pyright: ignore[reportArgumentType]
        models=config.assistant_models,
        store_name=config.store_name,
    )


@pytest.fixture
def app(config: Config, db: Database, payos: PayOSClient, assistant: SalesAssistant):
    return create_app(config, database=db, payos=payos, assistant=assistant)


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


@pytest.fixture
def make_user(db: Database, config: Config):
    """Create a profile and return it with bearer headers for it."""

    async def make(
        email: str, *, role: str = USER, display_name: str | None = None
    ) -> tuple[Profile, dict[str, str]]:
        profile = await ProfilesRepository(db).create(
            email=email,
            password_hash=generate_password_hash(PASSWORD),
            display_name=display_name,
            role=role,
        )
        headers = {"Authorization": f"Bearer {issue_api_key(profile.id, config)}"}
        return profile, headers

    return make


@pytest.fixture
def make_plan(db: Database):
    async def make(
        id: str = "premium-monthly",
        *,
        amount: int = 99000,
        duration_days: int = 30,
        active: bool = True,
    ) -> Plan:
        return await PlansRepository(db).add(
            Plan(
                id=id,
                title=f"Plan {id}",
                amount=amount,
                duration_days=duration_days,
                features=["Premium dishes", "Chef chat"],
                active=active,
            )
        )

    return make
