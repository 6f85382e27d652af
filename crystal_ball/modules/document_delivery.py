"""Serving stored PDFs: filename headers, the viewer shell and the title rewrite."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from io import BytesIO
from typing import Iterator
from urllib.parse import quote

from fastapi.responses import Response, StreamingResponse
from pypdf import PdfReader, PdfWriter
from starlette.concurrency import run_in_threadpool

from crystal_ball.modules.object_storage import StoredObject

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
CACHE_CONTROL = "private, max-age=3600"

VIEWER_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    * {{ margin: 0; padding: 0; box-sizing: border-box; }}
    html, body {{ width: 100%; height: 100%; overflow: hidden; }}
    iframe {{ width: 100%; height: 100%; border: none; }}
  </style>
</head>
<body>
  <iframe src="{src}" title="{title}"></iframe>
</body>
</html>"""


def display_title(title: str | None, file_name: str | None) -> str:
    cleaned = (title or "").strip()
    if cleaned:
        return cleaned
    stem, _ext = os.path.splitext(os.path.basename(file_name or ""))
    return stem or "document"


def ascii_filename(name: str) -> str:
    return "".join(ch for ch in name if 0x20 <= ord(ch) < 0x7F and ch not in {'"', "\\"})


def content_disposition(filename: str, *, attachment: bool = False) -> str:
    """Dual-encoded header value: plain ASCII ``filename`` plus RFC 5987 ``filename*``."""
    kind = "attachment" if attachment else "inline"
    fallback = ascii_filename(filename).strip() or "document.pdf"
    encoded = quote(filename, safe="")
    return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


def escape_title(value: str) -> str:
    return value.replace('"', "&quot;").replace("<", "&lt;").replace(">", "&gt;")


def viewer_html(src: str, title: str) -> str:
    return VIEWER_TEMPLATE.format(title=escape_title(title), src=src)


def document_viewer_src(document_id: str) -> str:
    return f"/api/documents/{quote(document_id, safe='')}/pdf?raw=true#toolbar=1&view=FitV"


def should_rewrite_title(size: int | None, threshold: int) -> bool:
    return size is not None and 0 <= size < threshold


def rewrite_pdf_title(data: bytes, title: str) -> bytes:
    """Return ``data`` with its /Title set, or the original bytes if pypdf cannot handle it."""
    try:
        reader = PdfReader(BytesIO(data))
        if reader.is_encrypted:
            reader.decrypt("")
        writer = PdfWriter(clone_from=reader)
        writer.add_metadata({"/Title": title})
        out = BytesIO()
        writer.write(out)
        return out.getvalue()
    except Exception:
        logger.warning("Could not rewrite PDF title, serving original bytes", exc_info=True)
        return data


class PdfBody(ABC):
    def __init__(self, stored: StoredObject, media_type: str = PDF_MEDIA_TYPE):
        self.stored = stored
        self.media_type = media_type

    @abstractmethod
    async def to_response(self, headers: dict[str, str]) -> Response: ...


class BufferedTitleRewrite(PdfBody):
    def __init__(self, stored: StoredObject, title: str):
        super().__init__(stored)
        self.title = title

    def render(self) -> bytes:
        return rewrite_pdf_title(self.stored.read(), self.title)

    async def to_response(self, headers: dict[str, str]) -> Response:
        data = await run_in_threadpool(self.render)
        return Response(content=data, media_type=self.media_type, headers=headers)


class PassthroughStream(PdfBody):
    def iter_bytes(self) -> Iterator[bytes]:
        return self.stored.iter_chunks()

    async def to_response(self, headers: dict[str, str]) -> Response:
        if self.stored.size is not None:
            headers = {**headers, "Content-Length": str(self.stored.size)}
        return StreamingResponse(self.iter_bytes(), media_type=self.media_type, headers=headers)


def select_pdf_body(stored: StoredObject, title: str, threshold: int) -> PdfBody:
    if should_rewrite_title(stored.size, threshold):
        return BufferedTitleRewrite(stored, title)
    return PassthroughStream(stored)


def delivery_headers(filename: str, title: str, *, direct: bool) -> dict[str, str]:
    return {
        "Content-Disposition": content_disposition(filename, attachment=direct),
        "Cache-Control": CACHE_CONTROL,
        "X-Document-Title": quote(title, safe=" "),
    }


async def build_pdf_response(stored: StoredObject, title: str, *, direct: bool, threshold: int) -> Response:
    headers = delivery_headers(f"{title}.pdf", title, direct=direct)
    return await select_pdf_body(stored, title, threshold).to_response(headers)


async def build_passthrough_response(
    stored: StoredObject, title: str, extension: str, *, direct: bool
) -> Response:
    headers = delivery_headers(f"{title}{extension}", title, direct=direct)
    return await PassthroughStream(stored, stored.content_type).to_response(headers)
