"""Document and folder repositories.

Repositories wrap a SQLAlchemy ``Session`` and enforce the data model
rules on top of the tables in ``notes_store``:

- a document's ``title`` is always ``derive_title(content)`` as of the
  last write and cannot be set directly;
- ``share_id`` and ``created_at`` are fixed at creation;
- deleting a folder moves its documents back to the root in the same
  transaction as the folder row deletion.

Callers get plain dataclasses back, never ORM rows.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from sqlalchemy import delete, false, func, select, update
from sqlalchemy.orm import Session

from notes_store import DocumentRow, FolderRow


logger = logging.getLogger("markdown_notes.repository")

ROOT_FOLDER = "root"
PREVIEW_LENGTH = 100
PREVIEW_ELLIPSIS = "..."
TITLE_PREFIX = "# "

FolderFilter = Union[int, str, None]

# Largest value a 64-bit signed integer primary key can hold.
MAX_ROW_ID = 2**63 - 1


class NotesError(Exception):
    """Base class for errors raised by the repositories."""


class NotFoundError(NotesError, LookupError):
    pass


class InvalidInputError(NotesError, ValueError):
    pass


@dataclass
class Document:
    id: int
    title: Optional[str]
    content: str
    created_at: datetime
    updated_at: datetime
    share_id: str
    folder_id: Optional[int] = None


@dataclass
class DocumentSummary:
    id: int
    title: Optional[str]
    preview: str
    created_at: datetime
    updated_at: datetime
    folder_id: Optional[int] = None


@dataclass
class DocumentPage:
    documents: List[DocumentSummary] = field(default_factory=list)
    has_more: bool = False


@dataclass
class SharedDocument:
    """Read-only view handed out for share links."""

    content: str
    title: Optional[str]
    created_at: datetime


@dataclass
class Folder:
    id: int
    name: str
    created_at: datetime
    updated_at: datetime
    document_count: int = 0


def derive_title(content: Optional[str]) -> Optional[str]:
    """Return the text of the first level-one heading in ``content``.

    Lines are compared after stripping surrounding whitespace, so an
    indented ``"  # Title"`` counts while ``"#"`` on its own and deeper
    headings such as ``"## Title"`` do not. Returns ``None`` when no line
    matches.
    """

    for line in (content or "").split("\n"):
        trimmed = line.strip()
        if trimmed.startswith(TITLE_PREFIX):
            return trimmed[len(TITLE_PREFIX):].strip()
    return None


def make_preview(content: Optional[str]) -> str:
    text = content or ""
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + PREVIEW_ELLIPSIS
    return text


def new_share_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _in_id_range(value: int) -> bool:
    return 0 < value <= MAX_ROW_ID


def _load(session: Session, model, row_id: int):
    # Ids the engine cannot represent cannot exist either.
    if not _in_id_range(row_id):
        return None
    return session.get(model, row_id)


def _normalize_folder_name(name: Optional[str]) -> str:
    trimmed = (name or "").strip()
    if not trimmed:
        raise InvalidInputError("Name is required")
    return trimmed


class DocumentRepository:
    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.session = session
        self.clock = clock

    def create(self, content: Optional[str] = None) -> Document:
        text = content or ""
        now = self.clock()
        row = DocumentRow(
            title=derive_title(text),
            content=text,
            created_at=now,
            updated_at=now,
            share_id=new_share_id(),
            folder_id=None,
        )
        self.session.add(row)
        self.session.commit()

        logger.info("document created id=%s", row.id)
        return self._to_domain(row)

    def get(self, document_id: int) -> Document:
        return self._to_domain(self._get_row(document_id))

    def list(
        self,
        page: int = 0,
        page_size: int = 20,
        folder_filter: FolderFilter = None,
    ) -> DocumentPage:
        if page < 0:
            raise InvalidInputError("Page must not be negative")
        if page_size <= 0:
            raise InvalidInputError("Page size must be positive")

        count_stmt = self._filtered(
            select(func.count()).select_from(DocumentRow), folder_filter
        )
        total = self.session.execute(count_stmt).scalar_one()

        # Offsets past the end can exceed the engine's integer range.
        if page * page_size >= total:
            return DocumentPage(documents=[], has_more=False)

        rows_stmt = (
            self._filtered(select(DocumentRow), folder_filter)
            .order_by(DocumentRow.created_at.desc(), DocumentRow.id.asc())
            .offset(page * page_size)
            .limit(page_size)
        )
        rows = self.session.execute(rows_stmt).scalars().all()

        return DocumentPage(
            documents=[self._to_summary(row) for row in rows],
            has_more=(page + 1) * page_size < total,
        )

    def update(self, document_id: int, content: Optional[str]) -> Document:
        row = self._get_row(document_id)

        text = content or ""
        row.content = text
        row.title = derive_title(text)
        row.updated_at = self.clock()
        self.session.commit()

        return self._to_domain(row)

    def delete(self, document_id: int) -> None:
        row = self._get_row(document_id)
        self.session.delete(row)
        self.session.commit()

        logger.info("document deleted id=%s", document_id)

    def move(self, document_id: int, folder_id: Optional[int] = None) -> Document:
        """Put a document into ``folder_id``, or back at the root for ``None``."""

        row = self._get_row(document_id)

        if folder_id is not None and _load(self.session, FolderRow, folder_id) is None:
            raise InvalidInputError("Folder not found")

        row.folder_id = folder_id
        row.updated_at = self.clock()
        self.session.commit()

        logger.info("document moved id=%s folder_id=%s", document_id, folder_id)
        return self._to_domain(row)

    def resolve_share(self, share_id: str) -> SharedDocument:
        row = self.session.execute(
            select(DocumentRow).where(DocumentRow.share_id == share_id)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("Shared document not found")

        return SharedDocument(
            content=row.content,
            title=row.title,
            created_at=_as_utc(row.created_at),
        )

    def _get_row(self, document_id: int) -> DocumentRow:
        row = _load(self.session, DocumentRow, document_id)
        if row is None:
            raise NotFoundError("Document not found")
        return row

    @staticmethod
    def _filtered(stmt, folder_filter: FolderFilter):
        if folder_filter is None:
            return stmt
        if folder_filter == ROOT_FOLDER:
            return stmt.where(DocumentRow.folder_id.is_(None))
        if isinstance(folder_filter, int) and not isinstance(folder_filter, bool):
            if not _in_id_range(folder_filter):
                return stmt.where(false())
            return stmt.where(DocumentRow.folder_id == folder_filter)
        raise InvalidInputError(f"Invalid folder filter: {folder_filter!r}")

    @staticmethod
    def _to_domain(row: DocumentRow) -> Document:
        return Document(
            id=row.id,
            title=row.title,
            content=row.content,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
            share_id=row.share_id,
            folder_id=row.folder_id,
        )

    @staticmethod
    def _to_summary(row: DocumentRow) -> DocumentSummary:
        return DocumentSummary(
            id=row.id,
            title=row.title,
            preview=make_preview(row.content),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
            folder_id=row.folder_id,
        )


class FolderRepository:
    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.session = session
        self.clock = clock

    def create(self, name: Optional[str]) -> Folder:
        trimmed = _normalize_folder_name(name)
        now = self.clock()
        row = FolderRow(name=trimmed, created_at=now, updated_at=now)
        self.session.add(row)
        self.session.commit()

        logger.info("folder created id=%s", row.id)
        return self._to_domain(row, 0)

    def get(self, folder_id: int) -> Folder:
        row = self._get_row(folder_id)
        return self._to_domain(row, self._count_documents(folder_id))

    def list(self) -> List[Folder]:
        counts = (
            select(
                DocumentRow.folder_id.label("folder_id"),
                func.count(DocumentRow.id).label("document_count"),
            )
            .where(DocumentRow.folder_id.is_not(None))
            .group_by(DocumentRow.folder_id)
            .subquery()
        )
        stmt = (
            select(FolderRow, func.coalesce(counts.c.document_count, 0))
            .outerjoin(counts, counts.c.folder_id == FolderRow.id)
            .order_by(FolderRow.name.asc(), FolderRow.id.asc())
        )
        return [self._to_domain(row, count) for row, count in self.session.execute(stmt).all()]

    def update(self, folder_id: int, name: Optional[str]) -> Folder:
        row = self._get_row(folder_id)
        row.name = _normalize_folder_name(name)
        row.updated_at = self.clock()
        self.session.commit()

        return self._to_domain(row, self._count_documents(folder_id))

    def delete(self, folder_id: int) -> int:
        """Delete a folder and move its documents to the root.

        Both steps run in a single transaction: if anything fails the
        documents keep their ``folder_id`` and the folder stays. Returns the
        number of documents that were moved.
        """

        self._get_row(folder_id)

        try:
            result = self.session.execute(
                update(DocumentRow)
                .where(DocumentRow.folder_id == folder_id)
                .values(folder_id=None, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            reparented = result.rowcount or 0
            self.session.execute(delete(FolderRow).where(FolderRow.id == folder_id))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        # Documents loaded earlier in this session must not keep the old folder.
        self.session.expire_all()

        logger.info("folder deleted id=%s reparented_documents=%s", folder_id, reparented)
        return reparented

    def _get_row(self, folder_id: int) -> FolderRow:
        row = _load(self.session, FolderRow, folder_id)
        if row is None:
            raise NotFoundError("Folder not found")
        return row

    def _count_documents(self, folder_id: int) -> int:
        stmt = select(func.count()).select_from(DocumentRow).where(DocumentRow.folder_id == folder_id)
        return self.session.execute(stmt).scalar_one()

    @staticmethod
    def _to_domain(row: FolderRow, document_count: int) -> Folder:
        return Folder(
            id=row.id,
            name=row.name,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
            document_count=int(document_count or 0),
        )
