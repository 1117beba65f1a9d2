"""
Faddl Match — Profile embedding storage model.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from faddl_match.database import Base


class ProfileEmbeddingRecord(Base):
    __tablename__ = "profile_embeddings"

    profile_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    profile_text: Mapped[list] = mapped_column(JSONB, nullable=False)
    values: Mapped[list] = mapped_column(JSONB, nullable=False)
    interests: Mapped[list] = mapped_column(JSONB, nullable=False)
    lifestyle: Mapped[list] = mapped_column(JSONB, nullable=False)
    personality: Mapped[list] = mapped_column(JSONB, nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    dimensions: Mapped[int] = mapped_column(Integer, nullable=False)
    metadata_json: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, comment="EmbeddingMetadata as JSON"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProfileEmbeddingRecord {self.profile_id} model={self.model}>"
