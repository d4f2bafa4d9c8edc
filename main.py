"""FastAPI entrypoint for the Markdown Notes service.

The HTTP layer is deliberately thin:
- Resolves configuration (database URL, uploads directory) once.
- Opens one SQLAlchemy session per request.
- Delegates every document and folder operation to ``notes_repository``
  and maps its errors onto HTTP status codes.
- Serves uploaded images and a read-only HTML page for share links.
"""
from __future__ import annotations

import html
import logging
import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import markdown
from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi import Path as PathParam
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from image_uploads import MAX_IMAGE_BYTES, ImageTooLargeError, delete_image, save_image
from notes_repository import (
    MAX_ROW_ID,
    ROOT_FOLDER,
    Document,
    DocumentRepository,
    Folder,
    FolderFilter,
    FolderRepository,
    InvalidInputError,
    NotFoundError,
)
from notes_store import create_session_factory, iter_session


APP_ROOT = Path(__file__).resolve().parent
APP_VERSION = "1.0.0"
logger = logging.getLogger("markdown_notes")


class AppConfig:
    """Application configuration for the Markdown Notes service.

    - database_url: SQLAlchemy URL of the documents/folders store, taken
      from NOTES_DATABASE_URL. Defaults to a SQLite file next to the app.
    - uploads_root: directory holding uploaded images, taken from
      UPLOADS_ROOT. Relative values are resolved against APP_ROOT.
    """

    def __init__(self) -> None:
        self.database_url = self._resolve_database_url()
        self.uploads_root = self._resolve_uploads_root()

    @staticmethod
    def _resolve_database_url() -> str:
        env_value = os.getenv("NOTES_DATABASE_URL")
        if env_value:
            return env_value
        return f"sqlite:///{(APP_ROOT / 'markdown.db').as_posix()}"

    @staticmethod
    def _resolve_uploads_root() -> Path:
        env_value = os.getenv("UPLOADS_ROOT")

        if env_value:
            candidate = Path(env_value)
            if not candidate.is_absolute():
                candidate = (APP_ROOT / candidate).resolve()
        else:
            candidate = (APP_ROOT / "uploads").resolve()

        # StaticFiles refuses to mount a missing directory.
        candidate.mkdir(parents=True, exist_ok=True)
        return candidate


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig()


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return create_session_factory(get_config().database_url)


def get_session() -> Iterator[Session]:
    yield from iter_session(get_session_factory())


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200

SHARE_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
</head>
<body>
<article class="shared-document">
{body}
</article>
</body>
</html>
"""


def _render_markdown_html(markdown_text: str) -> str:
    """Render markdown for the public share page.

    Raw HTML in the source is shown as escaped text instead of being
    passed through, so a shared note cannot inject markup or scripts.
    """

    renderer = markdown.Markdown(
        extensions=["extra", "codehilite", "pymdownx.tasklist"],
        extension_configs={
            "codehilite": {
                "linenums": False,
                "guess_lang": False,
                "noclasses": True,
            }
        },
        output_format="html5",
    )
    renderer.preprocessors.deregister("html_block")
    renderer.inlinePatterns.deregister("html")
    return renderer.convert(markdown_text)


def _parse_folder_filter(raw: Optional[str]) -> FolderFilter:
    if raw is None:
        return None

    value = raw.strip()
    if value == ROOT_FOLDER:
        return ROOT_FOLDER

    try:
        return int(value)
    except ValueError as exc:
        raise ValueError("folderId must be a folder id or 'root'") from exc


class DocumentPayload(BaseModel):
    id: int
    title: Optional[str] = None
    content: str
    createdAt: datetime
    updatedAt: datetime
    shareId: str
    folderId: Optional[int] = None


class DocumentListItem(BaseModel):
    id: int
    title: Optional[str] = None
    preview: str
    createdAt: datetime
    updatedAt: datetime
    folderId: Optional[int] = None


class DocumentListResponse(BaseModel):
    documents: List[DocumentListItem]
    hasMore: bool


class SharedDocumentPayload(BaseModel):
    content: str
    title: Optional[str] = None
    createdAt: datetime


class FolderPayload(BaseModel):
    id: int
    name: str
    documentCount: int
    createdAt: datetime
    updatedAt: datetime


class MoveDocumentResponse(BaseModel):
    id: int
    folderId: Optional[int] = None


class UploadResponse(BaseModel):
    url: str


class CreateDocumentRequest(BaseModel):
    content: Optional[str] = None


class UpdateDocumentRequest(BaseModel):
    content: Optional[str]


class MoveDocumentRequest(BaseModel):
    folderId: Optional[int] = None


class FolderRequest(BaseModel):
    name: Optional[str] = None


def _document_payload(document: Document) -> DocumentPayload:
    return DocumentPayload(
        id=document.id,
        title=document.title,
        content=document.content,
        createdAt=document.created_at,
        updatedAt=document.updated_at,
        shareId=document.share_id,
        folderId=document.folder_id,
    )


def _folder_payload(folder: Folder) -> FolderPayload:
    return FolderPayload(
        id=folder.id,
        name=folder.name,
        documentCount=folder.document_count,
        createdAt=folder.created_at,
        updatedAt=folder.updated_at,
    )


app = FastAPI(title="Markdown Notes", version=APP_VERSION)

app.mount(
    "/uploads",
    StaticFiles(directory=get_config().uploads_root),
    name="uploads",
)


@app.exception_handler(SQLAlchemyError)
async def _storage_failure(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "storage failure method=%s path=%s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Storage failure"})


@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    """Basic health and configuration probe.

    Reports the database backend name rather than the full URL so that
    credentials never leak through this endpoint.
    """

    cfg = get_config()

    return {
        "status": "ok",
        "version": APP_VERSION,
        "database": make_url(cfg.database_url).get_backend_name(),
        "uploadsRoot": str(cfg.uploads_root),
    }


@app.get("/api/folders", tags=["folders"], response_model=List[FolderPayload])
def list_folders(session: Session = Depends(get_session)) -> List[FolderPayload]:
    return [_folder_payload(folder) for folder in FolderRepository(session).list()]


@app.post("/api/folders", tags=["folders"], status_code=201, response_model=FolderPayload)
def create_folder(payload: FolderRequest, session: Session = Depends(get_session)) -> FolderPayload:
    try:
        folder = FolderRepository(session).create(payload.name)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return _folder_payload(folder)


@app.put("/api/folders/{folder_id}", tags=["folders"], response_model=FolderPayload)
def update_folder(
    payload: FolderRequest,
    folder_id: int = PathParam(..., le=MAX_ROW_ID),
    session: Session = Depends(get_session),
) -> FolderPayload:
    try:
        folder = FolderRepository(session).update(folder_id, payload.name)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return _folder_payload(folder)


@app.delete("/api/folders/{folder_id}", tags=["folders"], status_code=204, response_class=Response)
def delete_folder(
    folder_id: int = PathParam(..., le=MAX_ROW_ID),
    session: Session = Depends(get_session),
) -> Response:
    try:
        FolderRepository(session).delete(folder_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=204)


@app.get("/api/documents", tags=["documents"], response_model=DocumentListResponse)
def list_documents(
    page: int = Query(0, ge=0, le=MAX_ROW_ID),
    pageSize: int = Query(DEFAULT_PAGE_SIZE, gt=0, le=MAX_PAGE_SIZE),
    folderId: Optional[str] = None,
    session: Session = Depends(get_session),
) -> DocumentListResponse:
    try:
        folder_filter = _parse_folder_filter(folderId)
        result = DocumentRepository(session).list(page, pageSize, folder_filter)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return DocumentListResponse(
        documents=[
            DocumentListItem(
                id=item.id,
                title=item.title,
                preview=item.preview,
                createdAt=item.created_at,
                updatedAt=item.updated_at,
                folderId=item.folder_id,
            )
            for item in result.documents
        ],
        hasMore=result.has_more,
    )


@app.get("/api/documents/{document_id}", tags=["documents"], response_model=DocumentPayload)
def get_document(
    document_id: int = PathParam(..., le=MAX_ROW_ID),
    session: Session = Depends(get_session),
) -> DocumentPayload:
    try:
        document = DocumentRepository(session).get(document_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return _document_payload(document)


@app.post("/api/documents", tags=["documents"], status_code=201, response_model=DocumentPayload)
def create_document(
    payload: CreateDocumentRequest | None = None,
    session: Session = Depends(get_session),
) -> DocumentPayload:
    document = DocumentRepository(session).create(payload.content if payload else None)
    return _document_payload(document)


@app.put("/api/documents/{document_id}", tags=["documents"], response_model=DocumentPayload)
def update_document(
    payload: UpdateDocumentRequest,
    document_id: int = PathParam(..., le=MAX_ROW_ID),
    session: Session = Depends(get_session),
) -> DocumentPayload:
    try:
        document = DocumentRepository(session).update(document_id, payload.content)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return _document_payload(document)


@app.delete("/api/documents/{document_id}", tags=["documents"], status_code=204, response_class=Response)
def delete_document(
    document_id: int = PathParam(..., le=MAX_ROW_ID),
    session: Session = Depends(get_session),
) -> Response:
    try:
        DocumentRepository(session).delete(document_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=204)


@app.put("/api/documents/{document_id}/folder", tags=["documents"], response_model=MoveDocumentResponse)
def move_document(
    payload: MoveDocumentRequest,
    document_id: int = PathParam(..., le=MAX_ROW_ID),
    session: Session = Depends(get_session),
) -> MoveDocumentResponse:
    try:
        document = DocumentRepository(session).move(document_id, payload.folderId)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return MoveDocumentResponse(id=document.id, folderId=document.folder_id)


@app.get("/api/share/{share_id}", tags=["share"], response_model=SharedDocumentPayload)
def resolve_share(share_id: str, session: Session = Depends(get_session)) -> SharedDocumentPayload:
    try:
        shared = DocumentRepository(session).resolve_share(share_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return SharedDocumentPayload(
        content=shared.content,
        title=shared.title,
        createdAt=shared.created_at,
    )


@app.get("/share/{share_id}", tags=["share"], response_class=HTMLResponse)
def share_page(share_id: str, session: Session = Depends(get_session)) -> HTMLResponse:
    try:
        shared = DocumentRepository(session).resolve_share(share_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    page = SHARE_PAGE_TEMPLATE.format(
        title=html.escape(shared.title or "Shared document"),
        body=_render_markdown_html(shared.content),
    )
    return HTMLResponse(page)


@app.post("/api/upload", tags=["files"], response_model=UploadResponse)
async def upload_image(file: UploadFile = File(...)) -> UploadResponse:
    cfg = get_config()
    # One byte past the limit is enough to reject an oversized upload.
    raw = await file.read(MAX_IMAGE_BYTES + 1)

    try:
        url = save_image(cfg.uploads_root, file.filename or "", raw)
    except ImageTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return UploadResponse(url=url)


@app.delete("/api/uploads/{file_name}", tags=["files"], status_code=204, response_class=Response)
def remove_upload(file_name: str) -> Response:
    cfg = get_config()

    if not delete_image(cfg.uploads_root, f"/uploads/{file_name}"):
        raise HTTPException(status_code=404, detail="File not found")

    return Response(status_code=204)


if __name__ == "__main__":  # pragma: no cover - manual/dev entrypoint
    # This allows `python main.py` in addition to `uvicorn main:app`.
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("UVICORN_RELOAD", "true").lower() == "true",
    )
