"""Unit tests for the embedding stores — in-memory, SQL (mocked session) and Redis (mocked client)."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from faddl_match.models.embedding import ProfileEmbeddingRecord
from faddl_match.schemas.embedding import EmbeddingMetadata, ProfileEmbeddings
from faddl_match.services.embedding_store import (
    InMemoryEmbeddingStore,
    RedisEmbeddingStore,
    SqlEmbeddingStore,
)


def make_record(profile_id: str = "user-1", dims: int = 3) -> ProfileEmbeddings:
    vector = [0.1 * (i + 1) for i in range(dims)]
    return ProfileEmbeddings(
        profile_id=profile_id,
        profile_text=vector,
        values=vector,
        interests=vector,
        lifestyle=vector,
        personality=vector,
        metadata=EmbeddingMetadata(
            model="text-embedding-004",
            dimensions=dims,
            generated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            token_count=42,
        ),
    )


def mock_session_factory():
    session = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return factory, session


class TestProfileEmbeddingsSchema:
    def test_dimension_mismatch_rejected(self):
        with pytest.raises(ValueError):
            ProfileEmbeddings(
                profile_id="x",
                profile_text=[0.1, 0.2],
                values=[0.1],
                interests=[0.1, 0.2],
                lifestyle=[0.1, 0.2],
                personality=[0.1, 0.2],
                metadata=EmbeddingMetadata(
                    model="m", dimensions=2, generated_at=datetime.now(timezone.utc)
                ),
            )

    def test_facet_lookup(self):
        record = make_record()
        assert record.facet("values") == record.values
        with pytest.raises(KeyError):
            record.facet("metadata")


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_upsert_replaces(self):
        store = InMemoryEmbeddingStore()
        await store.upsert("user-1", make_record())
        await store.upsert("user-1", make_record(dims=4))
        fetched = await store.fetch("user-1")
        assert fetched.metadata.dimensions == 4
        assert len(store) == 1
        assert await store.fetch("missing") is None


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_upsert_merges_and_commits(self):
        factory, session = mock_session_factory()
        store = SqlEmbeddingStore(factory)
        await store.upsert("user-1", make_record())

        session.merge.assert_awaited_once()
        row = session.merge.await_args.args[0]
        assert isinstance(row, ProfileEmbeddingRecord)
        assert row.profile_id == "user-1"
        assert row.dimensions == 3
        assert row.metadata_json["token_count"] == 42
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fetch_rebuilds_record(self):
        original = make_record()
        factory, session = mock_session_factory()
        session.get.return_value = ProfileEmbeddingRecord(
            profile_id="user-1",
            profile_text=original.profile_text,
            values=original.values,
            interests=original.interests,
            lifestyle=original.lifestyle,
            personality=original.personality,
            model="text-embedding-004",
            dimensions=3,
            metadata_json=original.metadata.model_dump(mode="json"),
        )
        fetched = await SqlEmbeddingStore(factory).fetch("user-1")
        assert fetched == original

    @pytest.mark.asyncio
    async def test_fetch_missing(self):
        factory, session = mock_session_factory()
        session.get.return_value = None
        assert await SqlEmbeddingStore(factory).fetch("nobody") is None


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_upsert_writes_json_without_expiry(self):
        client = AsyncMock()
        record = make_record()
        await RedisEmbeddingStore(client).upsert("user-1", record)
        client.set.assert_awaited_once_with("profile_embeddings:user-1", record.model_dump_json())

    @pytest.mark.asyncio
    async def test_fetch_round_trip(self):
        client = AsyncMock()
        record = make_record()
        client.get.return_value = record.model_dump_json().encode()
        assert await RedisEmbeddingStore(client).fetch("user-1") == record
        client.get.assert_awaited_once_with("profile_embeddings:user-1")

    @pytest.mark.asyncio
    async def test_fetch_missing_and_close(self):
        client = AsyncMock()
        client.get.return_value = None
        store = RedisEmbeddingStore(client)
        assert await store.fetch("nobody") is None
        await store.close()
        client.aclose.assert_awaited_once()
