import logging

from databases import Database
from werkzeug.security import check_password_hash, generate_password_hash

from marketplace.db import dumps, new_id, now_iso, record_to_dict
from marketplace.errors import Conflict, NotFound, Unauthorized
from marketplace.models import ADMIN, USER, Profile


logger = logging.getLogger(__name__)


PROFILE_COLUMNS = (
    "id, email, display_name, avatar_url, bio, skills, role, cert_status, "
    "created_at, updated_at"
)


class ProfilesRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        *,
        email: str,
        password_hash: str,
        display_name: str | None = None,
        role: str = USER,
    ) -> Profile:
        id = new_id()
        now = now_iso()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO profiles
                (id, email, password_hash, display_name, role, created_at, updated_at)
            VALUES
                (:id, :email, :password_hash, :display_name, :role, :now, :now)
            """,
            values={
                "id": id,
                "email": email,
                "password_hash": password_hash,
                "display_name": display_name,
                "role": role,
                "now": now,
            },
        )
        return await self.get(id)

    async def find(self, id: str) -> Profile | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE id = :id",
            values={"id": id},
        )
        return None if row is None else Profile.from_row(record_to_dict(row))

    async def get(self, id: str) -> Profile:
        profile = await self.find(id)
        if profile is None:
            raise NotFound(f"Profile {id} not found")
        return profile

    async def credentials(self, email: str) -> tuple[str, str] | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            "SELECT id, password_hash FROM profiles WHERE LOWER(email) = :email",
            values={"email": email.lower()},
        )
        if row is None:
            return None
        data = record_to_dict(row)
        return data["id"], data["password_hash"]

    async def role(self, id: str) -> str | None:
        return await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
            "SELECT role FROM profiles WHERE id = :id", values={"id": id}
        )

    async def set_role(self, id: str, role: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "UPDATE profiles SET role = :role, updated_at = :now WHERE id = :id",
            values={"id": id, "role": role, "now": now_iso()},
        )

    async def set_cert_status(self, id: str, status: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "UPDATE profiles SET cert_status = :status, updated_at = :now WHERE id = :id",
            values={"id": id, "status": status, "now": now_iso()},
        )

    async def update_details(
        self,
        id: str,
        *,
        display_name: str | None = None,
        avatar_url: str | None = None,
        bio: str | None = None,
        skills: list[str] | None = None,
    ) -> Profile:
        # None leaves the column as it is
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            UPDATE profiles SET
                display_name = COALESCE(:display_name, display_name),
                avatar_url = COALESCE(:avatar_url, avatar_url),
                bio = COALESCE(:bio, bio),
                skills = COALESCE(:skills, skills),
                updated_at = :now
            WHERE id = :id
            """,
            values={
                "id": id,
                "display_name": display_name,
                "avatar_url": avatar_url,
                "bio": bio,
                "skills": dumps(skills),
                "now": now_iso(),
            },
        )
        return await self.get(id)

    async def emails(self, ids: list[str]) -> dict[str, str]:
        if not ids:
            return {}
        params = {f"id{i}": id for i, id in enumerate(ids)}
        placeholders = ", ".join(f":{k}" for k in params)
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT id, email FROM profiles WHERE id IN ({placeholders})",
            values=params,
        )
        return {r["id"]: r["email"] for r in map(record_to_dict, rows)}


async def signup(
    *,
    email: str,
    password: str,
    display_name: str | None,
    repository: ProfilesRepository,
) -> Profile:
    email = email.strip().lower()
    if await repository.credentials(email) is not None:
        raise Conflict("Email already registered")
    profile = await repository.create(
        email=email,
        password_hash=generate_password_hash(password),
        display_name=display_name,
    )
    logger.info("Signed up %s", profile.id)
    return profile


async def authenticate(
    *,
    email: str,
    password: str,
    repository: ProfilesRepository,
) -> Profile:
    creds = await repository.credentials(email.strip())
    if creds is None or not check_password_hash(creds[1], password):
        raise Unauthorized("Invalid email or password")
    return await repository.get(creds[0])


async def ensure_admin(
    profile: Profile,
    *,
    admin_emails: set[str],
    repository: ProfilesRepository,
) -> bool:
    """Promote allow-listed emails to admin. Returns whether the user is admin."""
    if profile.is_admin:
        return True
    if profile.email.lower() not in admin_emails:
        return False
    await repository.set_role(profile.id, ADMIN)
    logger.info("Promoted %s to admin", profile.id)
    return True
