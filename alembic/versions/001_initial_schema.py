"""Initial schema — profiles, interactions and profile embeddings.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. user_profiles ────────────────────────────────────────────
    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("gender", sa.String(10), nullable=False),
        sa.Column("age", sa.Integer, nullable=True),
        sa.Column("location_city", sa.String(100), nullable=True),
        sa.Column("location_country", sa.String(100), nullable=True),
        sa.Column(
            "religious_level",
            sa.String(20),
            nullable=True,
            comment="cultural | learning | practicing | devout",
        ),
        sa.Column(
            "education_level",
            sa.String(20),
            nullable=True,
            comment="high_school | bachelors | masters | doctorate",
        ),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column("interests", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("languages", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("family_values", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("marriage_timeline", sa.String(20), nullable=True),
        sa.Column("marital_status", sa.String(20), nullable=True),
        sa.Column("has_children", sa.Boolean, nullable=True),
        sa.Column("profession", sa.String(100), nullable=True),
        sa.Column("ethnicity", sa.String(50), nullable=True),
        sa.Column(
            "profile_completion",
            sa.Integer,
            nullable=True,
            comment="0-100; NULL means unknown",
        ),
        sa.Column(
            "preferences",
            postgresql.JSONB,
            nullable=True,
            comment="PartnerPreferences as JSON",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_user_profiles_gender", "user_profiles", ["gender"])
    op.create_index("ix_user_profiles_age", "user_profiles", ["age"])

    # ── 2. match_interactions ───────────────────────────────────────
    op.create_table(
        "match_interactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "matched_user_id",
            sa.String(64),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="pending",
            comment="pending | liked | passed | matched | blocked",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "matched_user_id", name="uq_interaction_pair"),
    )
    op.create_index("ix_match_interactions_user_id", "match_interactions", ["user_id"])
    op.create_index(
        "ix_match_interactions_matched_user_id", "match_interactions", ["matched_user_id"]
    )

    # ── 3. profile_embeddings ───────────────────────────────────────
    op.create_table(
        "profile_embeddings",
        sa.Column("profile_id", sa.String(64), primary_key=True),
        sa.Column("profile_text", postgresql.JSONB, nullable=False),
        sa.Column("values", postgresql.JSONB, nullable=False),
        sa.Column("interests", postgresql.JSONB, nullable=False),
        sa.Column("lifestyle", postgresql.JSONB, nullable=False),
        sa.Column("personality", postgresql.JSONB, nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("dimensions", sa.Integer, nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            comment="EmbeddingMetadata as JSON",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("profile_embeddings")

    op.drop_index("ix_match_interactions_matched_user_id", table_name="match_interactions")
    op.drop_index("ix_match_interactions_user_id", table_name="match_interactions")
    op.drop_table("match_interactions")

    op.drop_index("ix_user_profiles_age", table_name="user_profiles")
    op.drop_index("ix_user_profiles_gender", table_name="user_profiles")
    op.drop_table("user_profiles")
