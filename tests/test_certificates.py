from pathlib import Path

import pytest

from marketplace.certificates import CertificateStorage, mime_for
from marketplace.errors import Forbidden, NotFound
from marketplace.models import ADMIN, CHEF


PDF = b"%PDF-1.4 fake certificate"


@pytest.mark.parametrize(
    "name,expected",
    (
        ("diploma.PDF", "application/pdf"),
        ("photo.jpeg", "image/jpeg"),
        ("scan.png", "image/png"),
        ("notes.txt", "application/octet-stream"),
    ),
)
def test_mime_for(name: str, expected: str) -> None:
    assert mime_for(name) == expected


@pytest.mark.asyncio
async def test_storage_signed_urls(tmp_path: Path) -> None:
    storage = CertificateStorage(tmp_path, secret_key="s", ttl=60)
    relative = await storage.save("user-1", "../../My Diploma.pdf", PDF)
    assert relative.startswith("user-1/")
    assert relative.endswith("-My_Diploma.pdf")

    url = storage.signed_url(relative)
    token = url.rsplit("/", 1)[1]
    path = storage.resolve(token)
    assert path.read_bytes() == PDF

    with pytest.raises(Forbidden):
        storage.resolve(token + "x")

    expired = CertificateStorage(tmp_path, secret_key="s", ttl=-1)
    with pytest.raises(Forbidden) as e:
        expired.resolve(token)
    assert e.value.message == "Link expired"

    await storage.remove(relative)
    with pytest.raises(NotFound):
        storage.resolve(token)


def test_storage_refuses_paths_outside_root(tmp_path: Path) -> None:
    storage = CertificateStorage(tmp_path / "root", secret_key="s")
    token = storage.serializer.dumps("../outside.pdf")
    with pytest.raises(Forbidden):
        storage.resolve(token)


async def submit_upload(client, headers) -> dict:
    resp = await client.post(
        "/api/profiles/me/certificates",
        files=[("files", ("diploma.pdf", PDF, "application/pdf"))],
        data={"links": "https://certs.example.com/abc"},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.asyncio
async def test_submit_uploads_and_links(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    body = await submit_upload(client, headers)

    upload, link = body["certificates"]
    assert upload["mime_type"] == "application/pdf"
    assert upload["title"] == "diploma.pdf"
    assert upload["status"] == "pending"
    assert upload["viewUrl"].startswith("/storage/certificates/")
    assert link["mime_type"] == "link/url"
    assert link["viewUrl"] == "https://certs.example.com/abc"

    file = await client.get(upload["viewUrl"])
    assert file.status_code == 200
    assert file.content == PDF
    assert file.headers["content-type"] == "application/pdf"

    me = (await client.get("/api/me", headers=headers)).json()
    assert me["certStatus"] == "pending"

    mine = (await client.get("/api/certificates/me", headers=headers)).json()
    assert len(mine["items"]) == 2


@pytest.mark.asyncio
async def test_submit_json_links_and_empty(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    resp = await client.post(
        "/api/profiles/me/certificates",
        json={"links": ["https://a.example/1", "  ", 3]},
        headers=headers,
    )
    assert resp.status_code == 201
    assert [c["file_path"] for c in resp.json()["certificates"]] == ["https://a.example/1"]

    resp = await client.post("/api/profiles/me/certificates", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "No data"}

    assert (await client.post("/api/profiles/me/certificates", json={})).status_code == 401


@pytest.mark.asyncio
async def test_withdraw_only_own_pending(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    _, other = await make_user("other@example.com")
    _, admin = await make_user("admin@example.com", role=ADMIN)
    upload, link = (await submit_upload(client, headers))["certificates"]

    resp = await client.delete(f"/api/certificates/{upload['id']}", headers=other)
    assert resp.status_code == 404

    resp = await client.delete(f"/api/certificates/{upload['id']}", headers=headers)
    assert resp.json() == {"ok": True}
    assert (await client.get(upload["viewUrl"])).status_code == 404

    await client.post(
        f"/api/admin/certificates/{link['id']}/verify",
        json={"action": "reject", "reason": "Unreadable"},
        headers=admin,
    )
    resp = await client.delete(f"/api/certificates/{link['id']}", headers=headers)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Only pending can be deleted"}


@pytest.mark.asyncio
async def test_replace_with_upload_and_path(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    upload, link = (await submit_upload(client, headers))["certificates"]

    resp = await client.post(
        f"/api/certificates/{upload['id']}/replace",
        files={"file": ("new.png", b"\x89PNG", "image/png")},
        headers=headers,
    )
    assert resp.json() == {"ok": True}
    assert (await client.get(upload["viewUrl"])).status_code == 404

    items = {c["id"]: c for c in (await client.get("/api/certificates/me", headers=headers)).json()["items"]}
    replaced = items[upload["id"]]
    assert replaced["mime_type"] == "image/png"
    assert replaced["title"] == "new.png"
    assert (await client.get(replaced["viewUrl"])).content == b"\x89PNG"

    resp = await client.post(
        f"/api/certificates/{link['id']}/replace",
        json={"new_path": "https://certs.example.com/new.pdf", "new_title": "Updated"},
        headers=headers,
    )
    assert resp.status_code == 200
    items = {c["id"]: c for c in (await client.get("/api/certificates/me", headers=headers)).json()["items"]}
    assert items[link["id"]]["title"] == "Updated"
    assert items[link["id"]]["mime_type"] == "link/url"
    assert items[link["id"]]["viewUrl"] == "https://certs.example.com/new.pdf"

    resp = await client.post(f"/api/certificates/{link['id']}/replace", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "new_path required"}


@pytest.mark.asyncio
async def test_replace_cannot_take_another_users_file(client, make_user) -> None:
    _, victim = await make_user("victim@example.com")
    _, attacker = await make_user("attacker@example.com")
    victim_upload, _ = (await submit_upload(client, victim))["certificates"]
    attacker_upload, _ = (await submit_upload(client, attacker))["certificates"]

    victim_items = (await client.get("/api/certificates/me", headers=victim)).json()["items"]
    victim_path = next(c for c in victim_items if c["id"] == victim_upload["id"])["file_path"]

    url = f"/api/certificates/{attacker_upload['id']}/replace"
    for new_path in (victim_path, f"../{victim_path}", "../../etc/passwd"):
        resp = await client.post(url, json={"new_path": new_path}, headers=attacker)
        assert resp.status_code == 403
        assert resp.json() == {"error": "Invalid storage path"}

    attacker_items = (await client.get("/api/certificates/me", headers=attacker)).json()["items"]
    kept = next(c for c in attacker_items if c["id"] == attacker_upload["id"])
    assert (await client.get(kept["viewUrl"])).content == PDF

    resp = await client.delete(f"/api/certificates/{attacker_upload['id']}", headers=attacker)
    assert resp.status_code == 200
    victim_items = (await client.get("/api/certificates/me", headers=victim)).json()["items"]
    view_url = next(c for c in victim_items if c["id"] == victim_upload["id"])["viewUrl"]
    assert (await client.get(view_url)).content == PDF


@pytest.mark.asyncio
async def test_admin_review_promotes_to_chef(client, make_user) -> None:
    cook, headers = await make_user("cook@example.com")
    _, admin = await make_user("admin@example.com", role=ADMIN)
    upload, link = (await submit_upload(client, headers))["certificates"]

    assert (await client.get("/api/admin/certificates/pending", headers=headers)).status_code == 403
    pending = (await client.get("/api/admin/certificates/pending", headers=admin)).json()["items"]
    assert {c["id"] for c in pending} == {upload["id"], link["id"]}
    signed = next(c for c in pending if c["id"] == upload["id"])["signedUrl"]
    assert (await client.get(signed)).content == PDF

    url = f"/api/admin/certificates/{upload['id']}/verify"
    resp = await client.post(url, json={"action": "maybe"}, headers=admin)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid action"}

    resp = await client.post(url, json={"action": "approve"}, headers=admin)
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["item"]["status"] == "approved"
    assert body["item"]["reviewed_at"]

    me = (await client.get("/api/me", headers=headers)).json()
    assert me["id"] == cook.id
    assert me["role"] == CHEF
    assert me["certStatus"] == "approved"

    resp = await client.post(url, json={"action": "reject"}, headers=admin)
    assert resp.status_code == 409

    pending = (await client.get("/api/admin/certificates/pending", headers=admin)).json()["items"]
    assert [c["id"] for c in pending] == [link["id"]]


@pytest.mark.asyncio
async def test_admin_reject_keeps_role(client, make_user) -> None:
    _, headers = await make_user("cook@example.com")
    _, admin = await make_user("admin@example.com", role=ADMIN)
    cert = (
        await client.post(
            "/api/profiles/me/certificates", json={"links": ["https://a.example/1"]}, headers=headers
        )
    ).json()["certificates"][0]

    resp = await client.post(
        f"/api/admin/certificates/{cert['id']}/verify",
        json={"action": "reject", "reason": "Expired"},
        headers=admin,
    )
    assert resp.json()["item"]["rejection_reason"] == "Expired"
    me = (await client.get("/api/me", headers=headers)).json()
    assert me["role"] == "user"
    assert me["certStatus"] == "rejected"


@pytest.mark.asyncio
async def test_bad_file_tokens(client) -> None:
    resp = await client.get("/storage/certificates/not-a-token")
    assert resp.status_code == 403
    assert resp.json() == {"error": "Invalid link"}
