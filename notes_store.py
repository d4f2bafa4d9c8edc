"""Relational storage for documents and folders.

Two tables are defined here:

- ``folders``: user-named containers.
- ``documents``: markdown content with a derived title, an opaque share
  token and an optional ``folder_id`` reference.

``folder_id`` is a plain foreign key value; a folder never owns the
lifetime of its documents. The engine-level ``ON DELETE SET NULL`` only
backs up the explicit reparenting done by the folder repository.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Iterator

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


Base = declarative_base()


class FolderRow(Base):
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=True)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    share_id = Column(String(64), nullable=False, unique=True, index=True)
    folder_id = Column(
        Integer,
        ForeignKey("folders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@lru_cache(maxsize=None)
def get_engine(database_url: str) -> Engine:
    """Return the engine for ``database_url``, creating the schema once.

    Engines are cached per URL so every request against the same database
    shares one connection pool.
    """

    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, future=True, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    Base.metadata.create_all(engine)
    return engine


def create_session_factory(database_url: str) -> sessionmaker:
    return sessionmaker(
        bind=get_engine(database_url),
        class_=Session,
        autoflush=False,
        expire_on_commit=False,
    )


def iter_session(factory: sessionmaker) -> Iterator[Session]:
    """Yield one session and make sure it is closed afterwards."""

    session = factory()
    try:
        yield session
    finally:
        session.close()
