"""
Faddl Match — Matchable profile model.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from faddl_match.database import Base
from faddl_match.schemas.profile import PartnerPreferences, Profile


class UserProfileRecord(Base):
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gender: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    location_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location_country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    religious_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    education_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    interests: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    languages: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    family_values: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    marriage_timeline: Mapped[str | None] = mapped_column(String(20), nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    has_children: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    profession: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ethnicity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    profile_completion: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferences: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="PartnerPreferences as JSON"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def to_profile(self) -> Profile:
        return Profile(
            user_id=self.user_id,
            first_name=self.first_name,
            gender=self.gender,
            age=self.age,
            location_city=self.location_city,
            location_country=self.location_country,
            religious_level=self.religious_level,
            education_level=self.education_level,
            bio=self.bio,
            interests=list(self.interests or []),
            languages=list(self.languages or []),
            family_values=list(self.family_values or []),
            marriage_timeline=self.marriage_timeline,
            marital_status=self.marital_status,
            has_children=self.has_children,
            profession=self.profession,
            ethnicity=self.ethnicity,
            profile_completion=self.profile_completion,
        )

    def to_preferences(self) -> PartnerPreferences | None:
        if not self.preferences:
            return None
        return PartnerPreferences.model_validate(self.preferences)

    def __repr__(self) -> str:
        return f"<UserProfileRecord {self.user_id}>"
