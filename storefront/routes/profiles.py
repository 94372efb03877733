from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import FileResponse

from marketplace import certificates as certs
from marketplace.certificates import CertificatesRepository, CertificateStorage
from marketplace.errors import BadRequest
from marketplace.profiles import ProfilesRepository
from marketplace.schemas import ProfileInput, ReviewAction
from storefront.auth import require_admin, require_user
from storefront.responses import aJSONResponse, json_body


@aJSONResponse
async def me(request: Request):
    user = require_user(request)
    profile = await ProfilesRepository(request.app.state.db).get(user.id)
    return profile.to_private_dict()


@aJSONResponse
async def update_me(request: Request):
    user = require_user(request)
    body = ProfileInput.model_validate(await json_body(request))
    profile = await ProfilesRepository(request.app.state.db).update_details(
        user.id,
        display_name=body.full_name,
        avatar_url=body.avatar_url,
        bio=body.bio,
        skills=body.skills,
    )
    return profile.to_private_dict()


@aJSONResponse
async def public_profile(request: Request):
    profile = await ProfilesRepository(request.app.state.db).get(
        request.path_params["id"]
    )
    return profile.to_public_dict()


def _string_list(value: object) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]  # pyright: ignore[reportUnknownVariableType]
    return []


@aJSONResponse
async def submit_certificates(request: Request):
    user = require_user(request)
    uploads: list[tuple[str, bytes]] = []
    links: list[str] = []
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        async with request.form() as form:
            for f in form.getlist("files"):
                if isinstance(f, UploadFile) and f.filename:
                    uploads.append((f.filename, await f.read()))
            links = _string_list([l for l in form.getlist("links") if isinstance(l, str)])
    else:
        links = _string_list((await json_body(request)).get("links"))

    db = request.app.state.db
    created = await certs.submit(
        user.id,
        uploads=uploads,
        links=links,
        storage=request.app.state.storage,
        certificates=CertificatesRepository(db),
        profiles=ProfilesRepository(db),
    )
    storage: CertificateStorage = request.app.state.storage
    return {
        "certificates": [certs.listing(c, storage=storage, key="viewUrl") for c in created],
    }, 201


@aJSONResponse
async def my_certificates(request: Request):
    user = require_user(request)
    storage: CertificateStorage = request.app.state.storage
    items = await CertificatesRepository(request.app.state.db).for_user(user.id)
    return {"items": [certs.listing(c, storage=storage, key="viewUrl") for c in items]}


@aJSONResponse
async def certificate_detail(request: Request):
    user = require_user(request)
    await certs.withdraw(
        request.path_params["id"],
        user_id=user.id,
        storage=request.app.state.storage,
        certificates=CertificatesRepository(request.app.state.db),
    )
    return {"ok": True}


@aJSONResponse
async def replace_certificate(request: Request):
    user = require_user(request)
    storage: CertificateStorage = request.app.state.storage
    new_title: str | None = None
    new_mime: str | None = None
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        async with request.form() as form:
            upload = form.get("file")
            if not isinstance(upload, UploadFile) or not upload.filename:
                raise BadRequest("file required")
            new_path = await storage.save(user.id, upload.filename, await upload.read())
            new_title = upload.filename
    else:
        body = await json_body(request)
        new_path = body.get("new_path")
        if not new_path or not isinstance(new_path, str):
            raise BadRequest("new_path required")
        new_mime = body.get("new_mime")
        new_title = body.get("new_title")
    await certs.replace(
        request.path_params["id"],
        user_id=user.id,
        new_path=new_path,
        new_mime=new_mime,
        new_title=new_title,
        storage=storage,
        certificates=CertificatesRepository(request.app.state.db),
    )
    return {"ok": True}


@aJSONResponse
async def pending_certificates(request: Request):
    require_admin(request)
    storage: CertificateStorage = request.app.state.storage
    items = await CertificatesRepository(request.app.state.db).pending()
    return {"items": [certs.listing(c, storage=storage, key="signedUrl") for c in items]}


@aJSONResponse
async def verify_certificate(request: Request):
    admin = require_admin(request)
    body = await json_body(request)
    if body.get("action") not in ("approve", "reject"):
        raise BadRequest("Invalid action")
    db = request.app.state.db
    cert = await certs.verify(
        request.path_params["id"],
        ReviewAction.model_validate(body),
        reviewer_id=admin.id,
        certificates=CertificatesRepository(db),
        profiles=ProfilesRepository(db),
    )
    return {"ok": True, "item": cert.to_dict()}


async def certificate_file(request: Request) -> FileResponse:
    storage: CertificateStorage = request.app.state.storage
    path = storage.resolve(request.path_params["token"])
    return FileResponse(path, media_type=certs.mime_for(path.name))
