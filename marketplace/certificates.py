"""Chef applications: uploaded certificates, their storage and admin review."""

import asyncio
import logging
from pathlib import Path
import re
from typing import Any

from databases import Database
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from marketplace.db import new_id, now_iso, record_to_dict
from marketplace.errors import BadRequest, Conflict, Forbidden, NotFound
from marketplace.models import ADMIN, CHEF, Certificate
from marketplace.profiles import ProfilesRepository
from marketplace.schemas import ReviewAction


logger = logging.getLogger(__name__)


PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")

EXTENSION_MIME = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def mime_for(path: str) -> str:
    return EXTENSION_MIME.get(Path(path).suffix.lower(), "application/octet-stream")


def is_link(value: str) -> bool:
    return value.startswith(("http://", "https://"))


class CertificateStorage:
    """Files on local disk, handed out through signed, expiring URLs."""

    SALT = "certificate-file"

    def __init__(self, root: Path, *, secret_key: str, ttl: int = 600) -> None:
        self.root = root
        self.ttl = ttl
        self.serializer = URLSafeTimedSerializer(secret_key, salt=self.SALT)

    def _path(self, relative: str) -> Path:
        path = (self.root / relative).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise Forbidden("Invalid storage path")
        return path

    def owned_by(self, user_id: str, relative: str) -> bool:
        return self._path(relative).is_relative_to((self.root / user_id).resolve())

    async def save(self, user_id: str, filename: str, data: bytes) -> str:
        name = SAFE_NAME_RE.sub("_", Path(filename).name) or "certificate"
        relative = f"{user_id}/{new_id()}-{name}"
        path = self._path(relative)

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(write)
        logger.info("Stored certificate file %s (%d bytes)", relative, len(data))
        return relative

    async def remove(self, relative: str) -> None:
        path = self._path(relative)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    def signed_url(self, relative: str) -> str:
        return f"/storage/certificates/{self.serializer.dumps(relative)}"

    def resolve(self, token: str) -> Path:
        try:
            relative = self.serializer.loads(token, max_age=self.ttl)
        except SignatureExpired:
            raise Forbidden("Link expired") from None
        except BadSignature:
            raise Forbidden("Invalid link") from None
        path = self._path(relative)
        if not path.is_file():
            raise NotFound("File not found")
        return path

    def view_url(self, cert: Certificate) -> str:
        return cert.file_path if cert.is_link else self.signed_url(cert.file_path)


CERT_COLUMNS = (
    "id, user_id, title, file_path, mime_type, status, created_at, reviewed_at, "
    "rejection_reason"
)


class CertificatesRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, *, user_id: str, file_path: str, mime_type: str, title: str) -> Certificate:
        id = new_id()
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            INSERT INTO certificates (id, user_id, title, file_path, mime_type, status, created_at)
            VALUES (:id, :user_id, :title, :file_path, :mime_type, :status, :now)
            """,
            values={
                "id": id,
                "user_id": user_id,
                "title": title,
                "file_path": file_path,
                "mime_type": mime_type,
                "status": PENDING,
                "now": now_iso(),
            },
        )
        return await self.get(id)

    async def get(self, id: str) -> Certificate:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            f"SELECT {CERT_COLUMNS} FROM certificates WHERE id = :id",
            values={"id": id},
        )
        if row is None:
            raise NotFound()
        return Certificate.from_row(record_to_dict(row))

    async def for_user(self, user_id: str) -> list[Certificate]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT {CERT_COLUMNS} FROM certificates WHERE user_id = :user_id
            ORDER BY created_at DESC
            """,
            values={"user_id": user_id},
        )
        return [Certificate.from_row(record_to_dict(r)) for r in rows]

    async def pending(self) -> list[Certificate]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            f"""
            SELECT {CERT_COLUMNS} FROM certificates WHERE status = :status
            ORDER BY created_at ASC
            """,
            values={"status": PENDING},
        )
        return [Certificate.from_row(record_to_dict(r)) for r in rows]

    async def delete(self, id: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            "DELETE FROM certificates WHERE id = :id", values={"id": id}
        )

    async def repoint(self, id: str, *, file_path: str, mime_type: str, title: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            UPDATE certificates SET file_path = :file_path, mime_type = :mime_type,
                title = :title, status = :status, reviewed_at = NULL,
                reviewed_by = NULL, rejection_reason = NULL
            WHERE id = :id
            """,
            values={
                "id": id,
                "file_path": file_path,
                "mime_type": mime_type,
                "title": title,
                "status": PENDING,
            },
        )

    async def review(
        self, id: str, *, status: str, reviewer_id: str, reason: str | None
    ) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            """
            UPDATE certificates SET status = :status, reviewed_at = :now,
                reviewed_by = :reviewer_id, rejection_reason = :reason
            WHERE id = :id AND status = :pending
            """,
            values={
                "id": id,
                "status": status,
                "now": now_iso(),
                "reviewer_id": reviewer_id,
                "reason": reason,
                "pending": PENDING,
            },
        )


async def submit(
    user_id: str,
    *,
    uploads: list[tuple[str, bytes]],
    links: list[str],
    storage: CertificateStorage,
    certificates: CertificatesRepository,
    profiles: ProfilesRepository,
) -> list[Certificate]:
    if not uploads and not links:
        raise BadRequest("No data")
    created: list[Certificate] = []
    for filename, data in uploads:
        path = await storage.save(user_id, filename, data)
        created.append(
            await certificates.add(
                user_id=user_id,
                file_path=path,
                mime_type=mime_for(filename),
                title=Path(filename).name or "Certificate",
            )
        )
    for url in links:
        created.append(
            await certificates.add(
                user_id=user_id,
                file_path=url,
                mime_type=Certificate.LINK_MIME,
                title="External link",
            )
        )
    await profiles.set_cert_status(user_id, PENDING)
    logger.info("User %s submitted %d certificate(s)", user_id, len(created))
    return created


async def _owned_pending(
    id: str, user_id: str, *, certificates: CertificatesRepository, verb: str
) -> Certificate:
    cert = await certificates.get(id)
    if cert.user_id != user_id:
        raise NotFound()
    if cert.status != PENDING:
        raise Forbidden(f"Only pending can be {verb}")
    return cert


async def withdraw(
    id: str,
    *,
    user_id: str,
    storage: CertificateStorage,
    certificates: CertificatesRepository,
) -> None:
    cert = await _owned_pending(id, user_id, certificates=certificates, verb="deleted")
    await certificates.delete(cert.id)
    if not cert.is_link:
        await storage.remove(cert.file_path)


async def replace(
    id: str,
    *,
    user_id: str,
    new_path: str,
    new_mime: str | None,
    new_title: str | None,
    storage: CertificateStorage,
    certificates: CertificatesRepository,
) -> None:
    cert = await _owned_pending(id, user_id, certificates=certificates, verb="replaced")
    if is_link(new_path):
        mime_type = Certificate.LINK_MIME
        title = new_title or "External link"
    else:
        # stored files may only come from the caller's own folder
        if not storage.owned_by(user_id, new_path):
            raise Forbidden("Invalid storage path")
        mime_type = new_mime if new_mime and new_mime != Certificate.LINK_MIME else mime_for(new_path)
        title = new_title or "Certificate"
    await certificates.repoint(cert.id, file_path=new_path, mime_type=mime_type, title=title)
    if cert.file_path != new_path and not cert.is_link:
        await storage.remove(cert.file_path)


async def verify(
    id: str,
    action: ReviewAction,
    *,
    reviewer_id: str,
    certificates: CertificatesRepository,
    profiles: ProfilesRepository,
) -> Certificate:
    cert = await certificates.get(id)
    if cert.status != PENDING:
        raise Conflict("Certificate already reviewed")
    if action.action == "approve":
        await certificates.review(cert.id, status=APPROVED, reviewer_id=reviewer_id, reason=None)
        if await profiles.role(cert.user_id) != ADMIN:
            await profiles.set_role(cert.user_id, CHEF)
        await profiles.set_cert_status(cert.user_id, APPROVED)
        logger.info("Certificate %s approved, %s is now a chef", cert.id, cert.user_id)
    else:
        await certificates.review(
            cert.id, status=REJECTED, reviewer_id=reviewer_id, reason=action.reason
        )
        await profiles.set_cert_status(cert.user_id, REJECTED)
        logger.info("Certificate %s rejected", cert.id)
    return await certificates.get(cert.id)


def listing(cert: Certificate, *, storage: CertificateStorage, key: str) -> dict[str, Any]:
    return {**cert.to_dict(), key: storage.view_url(cert)}
