"""
Faddl Match — Embedding Stores

Persistent home of ``ProfileEmbeddings`` (one record per profile, upserted).
The vector cache sits in front of whichever store is configured:

* ``InMemoryEmbeddingStore`` — development and tests;
* ``SqlEmbeddingStore``      — ``profile_embeddings`` table via SQLAlchemy;
* ``RedisEmbeddingStore``    — one JSON document per profile, no expiry.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from faddl_match.models.embedding import ProfileEmbeddingRecord
from faddl_match.schemas.embedding import EmbeddingMetadata, ProfileEmbeddings

logger = structlog.get_logger(__name__)


class EmbeddingStore(ABC):
    @abstractmethod
    async def upsert(self, profile_id: str, record: ProfileEmbeddings) -> None:
        """Insert or replace the record for *profile_id*."""

    @abstractmethod
    async def fetch(self, profile_id: str) -> ProfileEmbeddings | None:
        """Return the stored record, or ``None``."""

    async def close(self) -> None:
        return None


class InMemoryEmbeddingStore(EmbeddingStore):
    def __init__(self) -> None:
        self._records: dict[str, ProfileEmbeddings] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, profile_id: str, record: ProfileEmbeddings) -> None:
        async with self._lock:
            self._records[profile_id] = record

    async def fetch(self, profile_id: str) -> ProfileEmbeddings | None:
        return self._records.get(profile_id)

    def __len__(self) -> int:
        return len(self._records)


class SqlEmbeddingStore(EmbeddingStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, profile_id: str, record: ProfileEmbeddings) -> None:
        row = ProfileEmbeddingRecord(
            profile_id=profile_id,
            profile_text=record.profile_text,
            values=record.values,
            interests=record.interests,
            lifestyle=record.lifestyle,
            personality=record.personality,
            model=record.metadata.model,
            dimensions=record.metadata.dimensions,
            metadata_json=record.metadata.model_dump(mode="json"),
        )
        async with self._session_factory() as session:
            await session.merge(row)
            await session.commit()
        logger.debug("embedding_record_upserted", profile_id=profile_id, backend="sql")

    async def fetch(self, profile_id: str) -> ProfileEmbeddings | None:
        async with self._session_factory() as session:
            row = await session.get(ProfileEmbeddingRecord, profile_id)
        if row is None:
            return None
        return ProfileEmbeddings(
            profile_id=row.profile_id,
            profile_text=row.profile_text,
            values=row.values,
            interests=row.interests,
            lifestyle=row.lifestyle,
            personality=row.personality,
            metadata=EmbeddingMetadata.model_validate(row.metadata_json),
        )


class RedisEmbeddingStore(EmbeddingStore):
    KEY_PREFIX = "profile_embeddings:"

    def __init__(self, client: Any) -> None:
        self._client = client

    def _key(self, profile_id: str) -> str:
        return f"{self.KEY_PREFIX}{profile_id}"

    async def upsert(self, profile_id: str, record: ProfileEmbeddings) -> None:
        await self._client.set(self._key(profile_id), record.model_dump_json())
        logger.debug("embedding_record_upserted", profile_id=profile_id, backend="redis")

    async def fetch(self, profile_id: str) -> ProfileEmbeddings | None:
        raw = await self._client.get(self._key(profile_id))
        if raw is None:
            return None
        return ProfileEmbeddings.model_validate_json(raw)

    async def close(self) -> None:
        await self._client.aclose()
