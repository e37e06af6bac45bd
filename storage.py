"""Document storage behind one interface.

Two interchangeable backends are provided. ``open_store`` picks one at startup
so that the services never branch on which backend is active.
"""
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class DocumentStore(ABC):
    @abstractmethod
    def get(self, collection, doc_id):
        """Return the stored dict or None."""

    @abstractmethod
    def put(self, collection, doc_id, doc):
        """Insert or replace a document."""

    @abstractmethod
    def update(self, collection, doc_id, fn):
        """Atomically replace a document with ``fn(current)``.

        ``current`` is the stored dict or None. Whatever ``fn`` returns is
        written back and returned. If ``fn`` raises, nothing is written and
        the exception propagates.
        """

    @abstractmethod
    def delete(self, collection, doc_id):
        """Remove a document. Returns True if something was deleted."""

    @abstractmethod
    def all(self, collection):
        """Every document in a collection, in no particular order."""

    def find(self, collection, **equals):
        return [
            doc for doc in self.all(collection)
            if all(doc.get(k) == v for k, v in equals.items())
        ]


class JsonFileStore(DocumentStore):
    """Whole-file JSON store for single-process, local use."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def _load(self):
        if not os.path.exists(self.path):
            return {}
        with open(self.path) as f:
            return json.load(f)

    def _save(self, data):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, collection, doc_id):
        with self._lock:
            return self._load().get(collection, {}).get(doc_id)

    def put(self, collection, doc_id, doc):
        with self._lock:
            data = self._load()
            data.setdefault(collection, {})[doc_id] = doc
            self._save(data)

    def update(self, collection, doc_id, fn):
        with self._lock:
            data = self._load()
            docs = data.setdefault(collection, {})
            doc = fn(docs.get(doc_id))
            docs[doc_id] = doc
            self._save(data)
            return doc

    def delete(self, collection, doc_id):
        with self._lock:
            data = self._load()
            removed = data.get(collection, {}).pop(doc_id, None)
            if removed is None:
                return False
            self._save(data)
            return True

    def all(self, collection):
        with self._lock:
            return list(self._load().get(collection, {}).values())


class Document(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class SqlDocumentStore(DocumentStore):
    """Documents as JSON rows in any database SQLAlchemy can reach."""

    def __init__(self, url):
        kwargs = {}
        if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
            # one shared connection, otherwise every session sees an empty db
            kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        self.engine = create_engine(url, **kwargs)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)
        # SQLite ignores FOR UPDATE; serialize updates within this process
        self._lock = threading.Lock()

    def get(self, collection, doc_id):
        session = self.Session()
        try:
            row = session.get(Document, (collection, doc_id))
            return dict(row.data) if row else None
        finally:
            session.close()

    def put(self, collection, doc_id, doc):
        session = self.Session()
        try:
            row = session.get(Document, (collection, doc_id))
            if row is None:
                session.add(Document(collection=collection, id=doc_id, data=doc))
            else:
                row.data = doc
            session.commit()
        finally:
            session.close()

    def update(self, collection, doc_id, fn):
        with self._lock:
            session = self.Session()
            try:
                row = session.scalars(
                    select(Document)
                    .where(Document.collection == collection, Document.id == doc_id)
                    .with_for_update()
                ).first()
                doc = fn(dict(row.data) if row else None)
                if row is None:
                    session.add(Document(collection=collection, id=doc_id, data=doc))
                else:
                    row.data = doc
                session.commit()
                return doc
            finally:
                session.close()

    def delete(self, collection, doc_id):
        session = self.Session()
        try:
            row = session.get(Document, (collection, doc_id))
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
        finally:
            session.close()

    def all(self, collection):
        session = self.Session()
        try:
            rows = session.scalars(
                select(Document).where(Document.collection == collection)
            ).all()
            return [dict(row.data) for row in rows]
        finally:
            session.close()


def open_store(config):
    url = config.get("DATABASE_URL")
    if url:
        logger.info("Using SQL document store at %s", url.split("@")[-1])
        return SqlDocumentStore(url)
    path = config["STORAGE_PATH"]
    logger.info("Using local JSON store at %s", path)
    return JsonFileStore(path)
