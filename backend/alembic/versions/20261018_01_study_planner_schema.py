"""Subjects, topics, weekly slots and topic progress."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_study_planner_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=True),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "topics",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("avg_minutes", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=True),
        sa.Column("difficulty_score", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("deadline", sa.Date(), nullable=True),
        sa.Column("prerequisites", sa.JSON(), nullable=False),
        sa.Column("energy_level", sa.String(length=16), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_topics_subject_id", "topics", ["subject_id"])

    op.create_table(
        "weekly_slots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("learner_id", sa.String(length=128), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("end_minute", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
    )
    op.create_index("ix_weekly_slots_learner_day", "weekly_slots", ["learner_id", "day"])

    op.create_table(
        "topic_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("learner_id", sa.String(length=128), nullable=False),
        sa.Column("topic_id", sa.String(length=36), nullable=False),
        sa.Column("completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_studied", sa.Date(), nullable=True),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_review_date", sa.Date(), nullable=True),
        sa.UniqueConstraint("learner_id", "topic_id", name="uq_topic_progress_learner_topic"),
    )
    op.create_index("ix_topic_progress_learner", "topic_progress", ["learner_id"])


def downgrade() -> None:
    op.drop_index("ix_topic_progress_learner", table_name="topic_progress")
    op.drop_table("topic_progress")
    op.drop_index("ix_weekly_slots_learner_day", table_name="weekly_slots")
    op.drop_table("weekly_slots")
    op.drop_index("ix_topics_subject_id", table_name="topics")
    op.drop_table("topics")
    op.drop_table("subjects")
