"""
Faddl Match — Embedding Providers

``EmbeddingProvider`` is the seam between the embedding service and whatever
model turns text into vectors.  The production implementation calls the
Gemini embedding API through ``google-generativeai``; the SDK is synchronous,
so calls are moved off the event loop with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

import google.generativeai as genai
import structlog

from faddl_match.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class EmbeddingProvider(ABC):
    """Turns a single text into a fixed-length vector."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short identifier recorded in embedding metadata."""

    @abstractmethod
    async def embed(self, text: str, *, model: str, dimensions: int) -> list[float]:
        """Embed *text* with *model*, returning exactly *dimensions* floats."""


class GeminiEmbeddingProvider(EmbeddingProvider):
    """Gemini embedding API via ``google-generativeai``."""

    TASK_TYPE = "semantic_similarity"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        if self.settings.GEMINI_API_KEY:
            genai.configure(api_key=self.settings.GEMINI_API_KEY)
        else:
            logger.warning("gemini_api_key_missing", provider=self.provider_name)

    @property
    def provider_name(self) -> str:
        return "gemini"

    async def embed(self, text: str, *, model: str, dimensions: int) -> list[float]:
        model_name = model if model.startswith("models/") else f"models/{model}"
        result = await asyncio.to_thread(
            genai.embed_content,
            model=model_name,
            content=text,
            task_type=self.TASK_TYPE,
            output_dimensionality=dimensions,
        )
        vector = result["embedding"]
        logger.debug("gemini_embedding_received", model=model_name, dimensions=len(vector))
        return [float(v) for v in vector]
