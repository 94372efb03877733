from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    env: Env = Env.local
    log_level: str = "INFO"
    html_dir: Path = Path("assets/html")
    assets_dir: Path = Path("assets")
    storage_dir: Path = Path("storage")
    db_url: str = "sqlite+aiosqlite:///rungear.db"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"
    store_name: str = "Run Gear"

    # Comma separated, promoted to admin by /api/auth/ensure-admin
    admin_emails: str = ""
    allowed_origins: list[str] = ["http://localhost:8081"]
    protected_prefixes: list[str] = ["/wishlist"]

    api_key_ttl: int = 60 * 60 * 24
    signed_url_ttl: int = 60 * 10

    payos_client_id: str | None = None
    payos_api_key: str | None = None
    payos_checksum_key: str | None = None
    payos_base_url: str = "https://api-merchant.payos.vn"

    openai_api_key: str | None = None
    assistant_models: list[str] = ["gpt-4o-mini", "gpt-4o", "gpt-4-turbo"]

    @property
    def debug(self) -> bool:
        return self.env == Env.local

    def admin_email_set(self) -> set[str]:
        return {
            e.strip().lower() for e in self.admin_emails.split(",") if e.strip()
        }
