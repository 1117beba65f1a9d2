from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class ReligiousLevel(str, Enum):
    CULTURAL = "cultural"
    LEARNING = "learning"
    PRACTICING = "practicing"
    DEVOUT = "devout"


class EducationLevel(str, Enum):
    HIGH_SCHOOL = "high_school"
    BACHELORS = "bachelors"
    MASTERS = "masters"
    DOCTORATE = "doctorate"


class MarriageTimeline(str, Enum):
    WITHIN_6_MONTHS = "within_6_months"
    WITHIN_1_YEAR = "within_1_year"
    WITHIN_2_YEARS = "within_2_years"
    FLEXIBLE = "flexible"


# Ordered scales used for step-distance scoring
RELIGIOUS_SCALE: list[ReligiousLevel] = list(ReligiousLevel)
EDUCATION_SCALE: list[EducationLevel] = list(EducationLevel)


class Profile(BaseModel):
    """A member's matchable profile.  Immutable for the duration of a run."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    gender: Gender
    first_name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=18, le=120)
    location_city: Optional[str] = None
    location_country: Optional[str] = None
    religious_level: Optional[ReligiousLevel] = None
    education_level: Optional[EducationLevel] = None
    bio: Optional[str] = None
    interests: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    family_values: list[str] = Field(default_factory=list)
    marriage_timeline: Optional[MarriageTimeline] = None
    marital_status: Optional[str] = None
    has_children: Optional[bool] = None
    profession: Optional[str] = None
    ethnicity: Optional[str] = None
    profile_completion: Optional[int] = Field(default=None, ge=0, le=100)


class PartnerPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_age: Optional[int] = None
    max_age: Optional[int] = None
    wants_children: Optional[bool] = None
    accepts_children: Optional[bool] = None
    education_levels: list[EducationLevel] = Field(default_factory=list)
    religious_levels: list[ReligiousLevel] = Field(default_factory=list)


class CandidateSummary(BaseModel):
    user_id: str
    first_name: Optional[str] = None
    age: Optional[int] = None
    location_city: Optional[str] = None
    location_country: Optional[str] = None
    religious_level: Optional[ReligiousLevel] = None
    education_level: Optional[EducationLevel] = None
    profession: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "CandidateSummary":
        return cls(
            user_id=profile.user_id,
            first_name=profile.first_name,
            age=profile.age,
            location_city=profile.location_city,
            location_country=profile.location_country,
            religious_level=profile.religious_level,
            education_level=profile.education_level,
            profession=profile.profession,
        )
