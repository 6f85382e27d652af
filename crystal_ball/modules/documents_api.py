import logging
import tempfile
import zipfile
from datetime import datetime, timezone
from typing import Any, BinaryIO, Iterator

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from crystal_ball.modules.api_helpers import commit, iso
from crystal_ball.modules.auth_deps import AuthContext, require_active_user, require_admin
from crystal_ball.modules.db import Document, get_session
from crystal_ball.modules.document_delivery import (
    CACHE_CONTROL,
    build_pdf_response,
    display_title,
    document_viewer_src,
    viewer_html,
)
from crystal_ball.modules.logging_helpers import write_audit
from crystal_ball.modules.object_storage import (
    CHUNK_SIZE,
    ObjectNotFoundError,
    ObjectStore,
    get_object_store,
    key_for_document,
)
from settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])

ZIP_SPOOL_BYTES = 64 * 1024 * 1024


class DocumentUpdatePayload(BaseModel):
    title: str
    description: str | None = None


class BulkDownloadPayload(BaseModel):
    document_ids: list[str]


def _document_to_dict(doc: Document) -> dict[str, Any]:
    return {
        "id": doc.id,
        "title": doc.title,
        "display_title": display_title(doc.title, doc.file_name),
        "description": doc.description,
        "file_name": doc.file_name,
        "pdf_url": doc.pdf_url,
        "file_size": doc.file_size,
        "uploaded_by": doc.uploaded_by,
        "created_at": iso(doc.created_at),
    }


async def _get_document_or_404(session: AsyncSession, document_id: str) -> Document:
    doc = await session.get(Document, document_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


@router.get("")
async def list_documents(
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    docs = (await session.execute(select(Document).order_by(Document.created_at))).scalars().all()
    return {"documents": [_document_to_dict(doc) for doc in docs]}


@router.post("", status_code=201)
async def upload_document(
    file: UploadFile | None = File(default=None),
    title: str = Form(default=""),
    description: str = Form(default=""),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    if not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    if (file.content_type or "").lower() != "application/pdf":
        raise HTTPException(status_code=400, detail="Only PDF files are supported")

    max_mb = get_settings().document_max_upload_mb
    data = await file.read()
    if len(data) > max_mb * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"File size must be less than {max_mb}MB")

    key = key_for_document(file.filename)
    try:
        await run_in_threadpool(get_object_store().put_bytes, key, data, "application/pdf")
    except Exception:
        logger.exception("Failed to store document %s", file.filename)
        raise HTTPException(status_code=500, detail="Failed to upload document")

    doc = Document(
        title=title.strip(),
        description=description.strip() or None,
        file_name=file.filename,
        pdf_url=key,
        file_size=len(data),
        uploaded_by=auth.user.id,
    )
    session.add(doc)
    await session.flush()
    write_audit(session, "document_create", auth.user.email, doc.id, after={"title": doc.title, "key": key})
    await commit(session, "upload document")
    await session.refresh(doc)
    return {"document": _document_to_dict(doc)}


@router.post("/download-bulk")
async def download_bulk(
    payload: BulkDownloadPayload,
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    if not payload.document_ids:
        raise HTTPException(status_code=400, detail="No document IDs provided")
    stmt = select(Document).where(Document.id.in_(payload.document_ids)).order_by(Document.created_at)
    docs = (await session.execute(stmt)).scalars().all()
    if not docs:
        raise HTTPException(status_code=404, detail="No documents found")

    entries = [(doc.id, doc.pdf_url, display_title(doc.title, doc.file_name)) for doc in docs]
    try:
        archive = await run_in_threadpool(build_zip, get_object_store(), entries)
    except Exception:
        logger.exception("Failed to create bulk download")
        raise HTTPException(status_code=500, detail="Failed to create bulk download")

    filename = f"documents_{datetime.now(timezone.utc).date().isoformat()}.zip"
    return StreamingResponse(
        _iter_file(archive),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache",
        },
    )


def unique_zip_name(title: str, used: set[str]) -> str:
    name = f"{title}.pdf"
    counter = 1
    while name in used:
        name = f"{title}_{counter}.pdf"
        counter += 1
    used.add(name)
    return name


def build_zip(store: ObjectStore, entries: list[tuple[str, str, str]]) -> BinaryIO:
    """Write (document id, key, title) blobs into a spooled zip; unreadable blobs are skipped."""
    spool = tempfile.SpooledTemporaryFile(max_size=ZIP_SPOOL_BYTES)
    used: set[str] = set()
    with zipfile.ZipFile(spool, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as archive:
        for document_id, key, title in entries:
            try:
                stored = store.get(key)
            except Exception:
                logger.error("Error adding document %s to archive", document_id, exc_info=True)
                continue
            name = unique_zip_name(title, used)
            with archive.open(name, "w", force_zip64=True) as target:
                for chunk in stored.iter_chunks():
                    target.write(chunk)
    spool.seek(0)
    return spool


def _iter_file(handle: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    return {"document": _document_to_dict(await _get_document_or_404(session, document_id))}


@router.patch("/{document_id}")
async def update_document(
    document_id: str,
    payload: DocumentUpdatePayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    doc = await _get_document_or_404(session, document_id)
    title = payload.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    before = {"title": doc.title, "description": doc.description}
    doc.title = title
    doc.description = (payload.description or "").strip() or None
    write_audit(session, "document_update", auth.user.email, doc.id, before=before,
                after={"title": doc.title, "description": doc.description})
    await commit(session, "update document")
    await session.refresh(doc)
    return {"document": _document_to_dict(doc)}


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    doc = await _get_document_or_404(session, document_id)
    try:
        await run_in_threadpool(get_object_store().delete, doc.pdf_url)
    except Exception:
        logger.exception("Failed to delete blob %s", doc.pdf_url)
        raise HTTPException(status_code=500, detail="Failed to delete document")
    write_audit(session, "document_delete", auth.user.email, doc.id, before=_document_to_dict(doc))
    await session.delete(doc)
    await commit(session, "delete document")
    return {"success": True}


@router.get("/{document_id}/pdf")
async def get_document_pdf(
    document_id: str,
    raw: bool = Query(default=False),
    direct: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    try:
        doc = await session.get(Document, document_id)
    except SQLAlchemyError:
        logger.exception("Document lookup failed for %s", document_id)
        raise HTTPException(status_code=500, detail="Failed to download document")
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")

    title = display_title(doc.title, doc.file_name)
    if not raw and not direct:
        return HTMLResponse(
            viewer_html(document_viewer_src(doc.id), title),
            headers={"Cache-Control": CACHE_CONTROL},
        )

    try:
        stored = await run_in_threadpool(get_object_store().get, doc.pdf_url)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Document file not found")
    except Exception:
        logger.exception("Failed to fetch blob %s", doc.pdf_url)
        raise HTTPException(status_code=500, detail="Failed to download document")

    return await build_pdf_response(
        stored, title, direct=direct, threshold=get_settings().pdf_title_rewrite_max_bytes
    )
