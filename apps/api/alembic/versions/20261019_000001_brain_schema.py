"""create brain schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "videos",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("hook", sa.Text(), nullable=True),
        sa.Column("script", sa.Text(), nullable=True),
        sa.Column("cta_text", sa.Text(), nullable=True),
        sa.Column("views", sa.Integer(), nullable=True),
        sa.Column("likes", sa.Integer(), nullable=True),
        sa.Column("comments", sa.Integer(), nullable=True),
        sa.Column("shares", sa.Integer(), nullable=True),
        sa.Column("saves", sa.Integer(), nullable=True),
        sa.Column("new_followers", sa.Integer(), nullable=True),
        sa.Column("avg_time_watched", sa.Float(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("traffic_sources_json", sa.JSON(), nullable=True),
        sa.Column("published_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("video_theme", sa.String(), nullable=True),
        sa.Column("cta_type", sa.String(), nullable=True),
        sa.Column("editing_style", sa.String(), nullable=True),
        sa.Column("tone_style", sa.String(), nullable=True),
        sa.Column("is_viral_flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_videos_user_id"), "videos", ["user_id"], unique=False)
    op.create_index(op.f("ix_videos_published_date"), "videos", ["published_date"], unique=False)

    op.create_table(
        "content_vectors",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("video_id", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("section_tag", sa.String(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("language", sa.String(), nullable=True),
        sa.Column("embedding_json", sa.JSON(), nullable=False),
        sa.Column("embedding_model", sa.String(), nullable=True),
        sa.Column("video_title", sa.String(), nullable=True),
        sa.Column("video_theme", sa.String(), nullable=True),
        sa.Column("cta_type", sa.String(), nullable=True),
        sa.Column("editing_style", sa.String(), nullable=True),
        sa.Column("tone_style", sa.String(), nullable=True),
        sa.Column("retention_pct", sa.Float(), nullable=True),
        sa.Column("saves_per_1k", sa.Float(), nullable=True),
        sa.Column("follows_per_1k", sa.Float(), nullable=True),
        sa.Column("for_you_pct", sa.Float(), nullable=True),
        sa.Column("views", sa.Integer(), nullable=True),
        sa.Column("likes", sa.Integer(), nullable=True),
        sa.Column("comments", sa.Integer(), nullable=True),
        sa.Column("shares", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("published_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["video_id"], ["videos.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "video_id", "content_type", name="uq_content_vectors_video_type"),
    )
    op.create_index(op.f("ix_content_vectors_user_id"), "content_vectors", ["user_id"], unique=False)
    op.create_index(op.f("ix_content_vectors_video_id"), "content_vectors", ["video_id"], unique=False)
    op.create_index(op.f("ix_content_vectors_content_type"), "content_vectors", ["content_type"], unique=False)
    op.create_index(op.f("ix_content_vectors_video_theme"), "content_vectors", ["video_theme"], unique=False)
    op.create_index(op.f("ix_content_vectors_views"), "content_vectors", ["views"], unique=False)
    op.create_index(op.f("ix_content_vectors_published_date"), "content_vectors", ["published_date"], unique=False)
    op.create_index(op.f("ix_content_vectors_created_at"), "content_vectors", ["created_at"], unique=False)

    op.create_table(
        "brain_corpus_states",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "account_contexts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("mission", sa.Text(), nullable=True),
        sa.Column("brand_pillars_json", sa.JSON(), nullable=True),
        sa.Column("positioning", sa.Text(), nullable=True),
        sa.Column("tone_guide", sa.Text(), nullable=True),
        sa.Column("content_themes_json", sa.JSON(), nullable=True),
        sa.Column("north_star_metric", sa.String(), nullable=True),
        sa.Column("strategic_bets_json", sa.JSON(), nullable=True),
        sa.Column("do_not_do_json", sa.JSON(), nullable=True),
        sa.Column("negative_keywords_json", sa.JSON(), nullable=True),
        sa.Column("weights_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_account_contexts_user_id"), "account_contexts", ["user_id"], unique=True)

    op.create_table(
        "idea_outcomes",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("idea_id", sa.String(), nullable=False),
        sa.Column("idea_text", sa.Text(), nullable=True),
        sa.Column("idea_type", sa.String(), nullable=True),
        sa.Column("idea_mode", sa.String(), nullable=True),
        sa.Column("published_video_id", sa.String(), nullable=True),
        sa.Column("expected_metrics_json", sa.JSON(), nullable=True),
        sa.Column("actual_metrics_json", sa.JSON(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("feedback_notes", sa.Text(), nullable=True),
        sa.Column("weights_before_json", sa.JSON(), nullable=True),
        sa.Column("weights_after_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_idea_outcomes_user_id"), "idea_outcomes", ["user_id"], unique=False)
    op.create_index(op.f("ix_idea_outcomes_idea_id"), "idea_outcomes", ["idea_id"], unique=False)
    op.create_index(op.f("ix_idea_outcomes_published_video_id"), "idea_outcomes", ["published_video_id"], unique=False)
    op.create_index(op.f("ix_idea_outcomes_created_at"), "idea_outcomes", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_table("idea_outcomes")
    op.drop_index(op.f("ix_account_contexts_user_id"), table_name="account_contexts")
    op.drop_table("account_contexts")
    op.drop_table("brain_corpus_states")
    op.drop_table("content_vectors")
    op.drop_table("videos")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
