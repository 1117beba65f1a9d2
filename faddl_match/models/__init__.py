"""
Faddl Match — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from faddl_match.models.embedding import ProfileEmbeddingRecord
from faddl_match.models.match import MatchInteraction
from faddl_match.models.profile import UserProfileRecord

__all__ = [
    "ProfileEmbeddingRecord",
    "MatchInteraction",
    "UserProfileRecord",
]
