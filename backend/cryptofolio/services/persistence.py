"""Durable document storage used by the ledger store."""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
import asyncio
import copy
import json
import logging
from cryptofolio.utils.errors import PersistenceError

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Key/value store of JSON documents (one collection)."""

    @abstractmethod
    async def get(self, doc_id: str) -> Optional[dict]:
        """Return the document or None if it does not exist."""
        pass

    @abstractmethod
    async def set(self, doc_id: str, data: dict):
        """Create or overwrite a document."""
        pass

    @abstractmethod
    async def delete(self, doc_id: str):
        pass


class MemoryDocumentStore(DocumentStore):
    """Process-local store, handy for tests and ephemeral runs."""

    def __init__(self, documents: Optional[Dict[str, dict]] = None):
        self.documents: Dict[str, dict] = copy.deepcopy(documents or {})
        self.writes = 0

    async def get(self, doc_id: str) -> Optional[dict]:
        doc = self.documents.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, doc_id: str, data: dict):
        self.documents[doc_id] = copy.deepcopy(data)
        self.writes += 1

    async def delete(self, doc_id: str):
        self.documents.pop(doc_id, None)


class JsonFileDocumentStore(DocumentStore):
    """One JSON file per document under ``<directory>/<collection>/``."""

    def __init__(self, directory: str, collection: str):
        self.root = Path(directory) / collection

    def _path(self, doc_id: str) -> Path:
        return self.root / f"{doc_id}.json"

    async def get(self, doc_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self._read, doc_id)

    async def set(self, doc_id: str, data: dict):
        await asyncio.to_thread(self._write, doc_id, data)

    async def delete(self, doc_id: str):
        await asyncio.to_thread(self._path(doc_id).unlink, True)

    def _read(self, doc_id: str) -> Optional[dict]:
        path = self._path(doc_id)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {path}: {e}") from e

    def _write(self, doc_id: str, data: dict):
        path = self._path(doc_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e


class LocalSnapshot:
    """Single-file local backup used when the durable store is unreachable."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None

    def load(self) -> Optional[dict]:
        if self.path is None or not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"[PERSIST] Local snapshot unreadable: {e}")
            return None

    def save(self, data: dict):
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data), encoding="utf-8")
        except OSError as e:
            logger.error(f"[PERSIST] Local snapshot not written: {e}")

    def clear(self):
        if self.path is not None and self.path.exists():
            self.path.unlink()
