from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

FACETS: tuple[str, ...] = ("profile_text", "values", "interests", "lifestyle", "personality")


class EmbeddingMetadata(BaseModel):
    model: str
    dimensions: int
    generated_at: datetime
    version: str = "1.0"
    token_count: int = 0
    facet_models: dict[str, str] = Field(default_factory=dict)
    # Digest of the facet texts the vectors were generated from.
    content_hash: str | None = None


class ProfileEmbeddings(BaseModel):
    """The five facet vectors of one profile, all of the same dimension."""

    profile_id: str
    profile_text: list[float]
    values: list[float]
    interests: list[float]
    lifestyle: list[float]
    personality: list[float]
    metadata: EmbeddingMetadata

    @model_validator(mode="after")
    def _dimensions_match(self) -> "ProfileEmbeddings":
        for facet in FACETS:
            size = len(getattr(self, facet))
            if size != self.metadata.dimensions:
                raise ValueError(
                    f"{facet} vector has {size} dimensions, expected {self.metadata.dimensions}"
                )
        return self

    def facet(self, name: str) -> list[float]:
        if name not in FACETS:
            raise KeyError(name)
        return getattr(self, name)


class EmbeddingSummary(BaseModel):
    profile_id: str
    metadata: EmbeddingMetadata
