import datetime as dt
import json
from typing import Any
from uuid import uuid4

from databases import Database
from databases.interfaces import Record


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id VARCHAR(64) PRIMARY KEY,
        email VARCHAR(320) UNIQUE NOT NULL,
        password_hash VARCHAR(256) NOT NULL,
        display_name VARCHAR(120),
        avatar_url VARCHAR(2048),
        bio TEXT,
        skills TEXT,
        role VARCHAR(16) NOT NULL DEFAULT 'user',
        cert_status VARCHAR(16),
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        user_id VARCHAR(64) PRIMARY KEY,
        plan_id VARCHAR(64),
        plan_expired_at VARCHAR(40),
        is_premium BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(120) NOT NULL,
        slug VARCHAR(160) UNIQUE NOT NULL,
        icon VARCHAR(64)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plans (
        id VARCHAR(64) PRIMARY KEY,
        title VARCHAR(160) NOT NULL,
        description TEXT,
        amount BIGINT NOT NULL,
        currency VARCHAR(8) NOT NULL DEFAULT 'VND',
        duration_days INTEGER NOT NULL DEFAULT 30,
        features TEXT,
        audience VARCHAR(16) NOT NULL DEFAULT 'user',
        active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        plan_id VARCHAR(64) NOT NULL,
        amount BIGINT NOT NULL,
        currency VARCHAR(8) NOT NULL,
        order_code BIGINT UNIQUE NOT NULL,
        status VARCHAR(16) NOT NULL,
        provider VARCHAR(16) NOT NULL,
        provider_payment_link_id VARCHAR(128),
        checkout_url VARCHAR(2048),
        qr_code TEXT,
        raw_payload TEXT,
        provider_response TEXT,
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_transactions (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        order_id VARCHAR(64),
        plan_id VARCHAR(64),
        amount BIGINT NOT NULL DEFAULT 0,
        currency VARCHAR(8) NOT NULL DEFAULT 'VND',
        payment_method VARCHAR(16) NOT NULL,
        transaction_type VARCHAR(16) NOT NULL,
        status VARCHAR(16) NOT NULL,
        reference_code VARCHAR(64),
        notes TEXT,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dishes (
        id VARCHAR(64) PRIMARY KEY,
        category_id VARCHAR(64),
        title VARCHAR(160) NOT NULL,
        slug VARCHAR(160) UNIQUE NOT NULL,
        cover_image_url VARCHAR(2048),
        diet VARCHAR(30),
        time_minutes INTEGER,
        servings INTEGER,
        tips TEXT,
        created_by VARCHAR(64),
        published BOOLEAN NOT NULL DEFAULT FALSE,
        review_status VARCHAR(16) NOT NULL DEFAULT 'pending',
        review_note TEXT,
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS premium_dishes (
        dish_id VARCHAR(64) PRIMARY KEY,
        chef_id VARCHAR(64),
        required_plan VARCHAR(64) NOT NULL DEFAULT 'premium',
        active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS follows (
        follower_id VARCHAR(64) NOT NULL,
        followed_id VARCHAR(64) NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        PRIMARY KEY (follower_id, followed_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comments (
        id VARCHAR(64) PRIMARY KEY,
        dish_id VARCHAR(64) NOT NULL,
        user_id VARCHAR(64) NOT NULL,
        content TEXT NOT NULL,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ratings (
        id VARCHAR(64) PRIMARY KEY,
        dish_id VARCHAR(64) NOT NULL,
        user_id VARCHAR(64) NOT NULL,
        stars INTEGER NOT NULL,
        comment TEXT,
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40),
        UNIQUE (dish_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS certificates (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        title VARCHAR(256) NOT NULL,
        file_path VARCHAR(2048) NOT NULL,
        mime_type VARCHAR(128) NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'pending',
        created_at VARCHAR(40) NOT NULL,
        reviewed_at VARCHAR(40),
        reviewed_by VARCHAR(64),
        rejection_reason TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS support_messages (
        id VARCHAR(64) PRIMARY KEY,
        session_id VARCHAR(128) NOT NULL,
        user_id VARCHAR(64),
        role VARCHAR(16) NOT NULL,
        text TEXT NOT NULL,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS support_messages_session_idx
    ON support_messages (session_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_chat_logs (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64),
        session_id VARCHAR(128),
        role VARCHAR(16) NOT NULL,
        text TEXT NOT NULL,
        meta TEXT,
        created_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_message_ratings (
        id VARCHAR(64) PRIMARY KEY,
        message_local_id VARCHAR(128) NOT NULL,
        rating VARCHAR(8) NOT NULL,
        text TEXT NOT NULL,
        user_id VARCHAR(64),
        created_at VARCHAR(40) NOT NULL
    )
    """,
)


async def create_db(db: Database) -> None:
    for statement in SCHEMA:
        await db.execute(query=statement)  # pyright: ignore[reportUnknownMemberType]


def new_id() -> str:
    return uuid4().hex


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat()


def record_to_dict(record: Record) -> dict[str, Any]:
    return dict(record._mapping)  # pyright: ignore[reportPrivateUsage]


def dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def loads(value: str | None, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    return json.loads(value)
