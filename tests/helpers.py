from contextlib import asynccontextmanager
from io import BytesIO

from httpx import ASGITransport, AsyncClient
from PIL import Image
from pypdf import PdfWriter
from pypdf.generic import ArrayObject, DictionaryObject, NameObject, TextStringObject

from crystal_ball.modules.auth_helpers import hash_password
from crystal_ball.modules.db import AsyncSessionLocal, User
from main import app

DEFAULT_PASSWORD = "Password1"


@asynccontextmanager
async def api_client(token: str | None = None):
    headers: dict[str, str] = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=headers) as client:
        yield client


async def create_user(
    email: str = "player@example.com",
    password: str = DEFAULT_PASSWORD,
    *,
    is_admin: bool = False,
    requires_password_change: bool = False,
    name: str | None = None,
) -> User:
    async with AsyncSessionLocal() as session:
        user = User(
            email=email,
            name=name or email.split("@")[0],
            password_hash=hash_password(password, iterations=1000),
            is_admin=is_admin,
            requires_password_change=requires_password_change,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


async def login(email: str, password: str = DEFAULT_PASSWORD) -> str:
    async with api_client() as client:
        resp = await client.post("/api/auth/login", json={"email": email, "password": password})
        resp.raise_for_status()
        return resp.json()["token"]


async def signed_in(email: str = "player@example.com", **kwargs) -> tuple[User, str]:
    user = await create_user(email, **kwargs)
    return user, await login(email)


async def create_campaign(client, name: str = "Curse of Strahd") -> dict:
    resp = await client.post("/api/campaigns", json={"name": name})
    resp.raise_for_status()
    return resp.json()["campaign"]


async def create_character(client, campaign_id: str, name: str = "Merlin") -> dict:
    resp = await client.post("/api/characters", data={"name": name, "campaign_id": campaign_id})
    resp.raise_for_status()
    return resp.json()["character"]


async def upload_level(client, character_id: str, level: int, data: bytes, *, filename="sheet.pdf",
                       content_type="application/pdf"):
    return await client.post(
        f"/api/characters/{character_id}/levels",
        data={"level": str(level)},
        files={"file": (filename, data, content_type)},
    )


def make_pdf(title: str | None = None, fields: dict[str, str] | None = None) -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    if title:
        writer.add_metadata({"/Title": title})
    if fields:
        refs = ArrayObject()
        for name, value in fields.items():
            field = DictionaryObject(
                {
                    NameObject("/FT"): NameObject("/Tx"),
                    NameObject("/T"): TextStringObject(name),
                    NameObject("/V"): TextStringObject(value),
                }
            )
            refs.append(writer._add_object(field))
        writer._root_object[NameObject("/AcroForm")] = DictionaryObject({NameObject("/Fields"): refs})
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def make_png(size=(4, 4)) -> bytes:
    out = BytesIO()
    Image.new("RGB", size, (120, 40, 200)).save(out, format="PNG")
    return out.getvalue()
