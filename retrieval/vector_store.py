"""Vector store interface and an in-process cosine-similarity implementation."""

import asyncio
import logging
import pickle
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field

from utils.errors import ExternalServiceError
from .embeddings import EmbeddingClient

logger = logging.getLogger(__name__)


class VectorHit(BaseModel):
    """One nearest-neighbour result."""
    id: str
    document: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    distance: float


class VectorRecord(BaseModel):
    """A document to upsert."""
    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


def sanitize_collection_name(name: str) -> str:
    """Collection names are limited to [A-Za-z0-9_-]."""
    return re.sub(r"[^A-Za-z0-9_-]", "_", name)


def chat_collection_name(conversation_id: str) -> str:
    return sanitize_collection_name(f"chat-{conversation_id}")


class BaseVectorStore(ABC):
    """Asynchronous vector store interface."""

    @abstractmethod
    async def get_or_create_collection(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        pass

    @abstractmethod
    async def list_collections(self) -> List[str]:
        pass

    @abstractmethod
    async def delete_collection(self, name: str) -> bool:
        pass

    @abstractmethod
    async def upsert_many(self, collection: str, records: List[VectorRecord]) -> int:
        pass

    async def upsert(self, collection: str, id: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> int:
        return await self.upsert_many(collection, [VectorRecord(id=id, text=text, metadata=metadata or {})])

    @abstractmethod
    async def query(
        self,
        collection: str,
        query_text: str,
        k: int = 5,
        where: Optional[Dict[str, Any]] = None
    ) -> List[VectorHit]:
        pass


class _Collection:
    def __init__(self, metadata: Optional[Dict[str, Any]] = None):
        self.metadata = metadata or {}
        self.ids: List[str] = []
        self.documents: List[str] = []
        self.metadatas: List[Dict[str, Any]] = []
        self.embeddings: List[np.ndarray] = []


class LocalVectorStore(BaseVectorStore):
    """
    Vector store kept in memory and pickled to disk.

    Documents are embedded with OpenAI embeddings; distance is
    1 - cosine similarity, so smaller is closer.
    """

    def __init__(self, embedder: EmbeddingClient, persist_path: Optional[str] = None):
        self.embedder = embedder
        self.persist_path = Path(persist_path) if persist_path else None
        self._collections: Dict[str, _Collection] = {}
        self._lock = asyncio.Lock()
        self._load()

    def _load(self):
        if not self.persist_path or not self.persist_path.exists():
            return
        try:
            with open(self.persist_path, "rb") as f:
                self._collections = pickle.load(f)
            logger.info(f"Loaded {len(self._collections)} vector collections from {self.persist_path}")
        except (OSError, pickle.UnpicklingError, EOFError) as e:
            logger.warning(f"Failed to load vector store from {self.persist_path}: {e}")

    def _save(self):
        if not self.persist_path:
            return
        self.persist_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.persist_path, "wb") as f:
            pickle.dump(self._collections, f)

    async def get_or_create_collection(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        async with self._lock:
            if name not in self._collections:
                self._collections[name] = _Collection(metadata)
                logger.info(f"Created vector collection {name}")
        return name

    async def list_collections(self) -> List[str]:
        return sorted(self._collections)

    async def delete_collection(self, name: str) -> bool:
        async with self._lock:
            removed = self._collections.pop(name, None) is not None
            if removed:
                await asyncio.to_thread(self._save)
        return removed

    async def upsert_many(self, collection: str, records: List[VectorRecord]) -> int:
        if not records:
            return 0
        embeddings = await self.embedder.embed([r.text for r in records])

        async with self._lock:
            coll = self._collections.setdefault(collection, _Collection())
            positions = {doc_id: i for i, doc_id in enumerate(coll.ids)}
            for record, embedding in zip(records, embeddings):
                if record.id in positions:
                    i = positions[record.id]
                    coll.documents[i] = record.text
                    coll.metadatas[i] = record.metadata
                    coll.embeddings[i] = embedding
                else:
                    positions[record.id] = len(coll.ids)
                    coll.ids.append(record.id)
                    coll.documents.append(record.text)
                    coll.metadatas.append(record.metadata)
                    coll.embeddings.append(embedding)
            await asyncio.to_thread(self._save)

        logger.info(f"Upserted {len(records)} documents into {collection}")
        return len(records)

    async def query(
        self,
        collection: str,
        query_text: str,
        k: int = 5,
        where: Optional[Dict[str, Any]] = None
    ) -> List[VectorHit]:
        coll = self._collections.get(collection)
        if coll is None:
            raise ExternalServiceError("vector_store", f"collection {collection} does not exist")
        if not coll.ids:
            return []

        query_embedding = await self.embedder.embed_query(query_text)
        matrix = np.vstack(coll.embeddings)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_embedding)
        norms[norms == 0] = 1e-12
        similarities = matrix @ query_embedding / norms

        hits = []
        for i in np.argsort(-similarities):
            metadata = coll.metadatas[i]
            if where and any(metadata.get(key) != value for key, value in where.items()):
                continue
            hits.append(VectorHit(
                id=coll.ids[i],
                document=coll.documents[i],
                metadata=metadata,
                distance=float(1.0 - similarities[i]),
            ))
            if len(hits) >= k:
                break
        return hits
