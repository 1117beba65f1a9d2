"""
Faddl Match — Member interaction model.

Any recorded interaction (like, pass, match, block) between two members
excludes that pair from future match generation.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from faddl_match.database import Base


class MatchInteraction(Base):
    __tablename__ = "match_interactions"
    __table_args__ = (
        UniqueConstraint("user_id", "matched_user_id", name="uq_interaction_pair"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_profiles.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    matched_user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_profiles.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<MatchInteraction {self.user_id} -> {self.matched_user_id} ({self.status})>"
