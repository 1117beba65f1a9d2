from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from faddl_match.schemas.profile import CandidateSummary, EducationLevel, ReligiousLevel


class AgeRange(BaseModel):
    min: int = Field(ge=18)
    max: int = Field(le=120)

    @model_validator(mode="after")
    def _ordered(self) -> "AgeRange":
        if self.min > self.max:
            raise ValueError("age_range.min must not exceed age_range.max")
        return self


class MatchFilters(BaseModel):
    age_range: Optional[AgeRange] = None
    education_levels: list[EducationLevel] = Field(default_factory=list)
    religious_levels: list[ReligiousLevel] = Field(default_factory=list)


class MatchGenerationRequest(BaseModel):
    user_id: str
    limit: Optional[int] = Field(default=None, ge=1)
    filters: Optional[MatchFilters] = None


class SubScores(BaseModel):
    values: float
    interests: float
    lifestyle: float
    personality: float
    profile_text: float
    demographics: float


class RuleScores(BaseModel):
    religious: float
    education: float
    age: float
    location: float
    shared_interests: float
    timeline: float
    bio_similarity: float


class SimilarityScore(BaseModel):
    overall_score: float
    subscores: SubScores
    rule_scores: RuleScores
    islamic_alignment: float
    cultural_compatibility: float
    shared_interests: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    explanation: str = ""
    embeddings_used: bool = False


class MatchCandidate(BaseModel):
    candidate: CandidateSummary
    compatibility_score: float
    shared_interests: list[str]
    reasons: list[str]
    score: SimilarityScore


class MatchGenerationResponse(BaseModel):
    matches: list[MatchCandidate]
    total_candidates_evaluated: int
    generated_at: datetime
