"""live_rooms_core

Revision ID: 5c1e2f3a4b6d
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e2f3a4b6d"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "live_questions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("options", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("correct_option_id", sa.String(64), nullable=False),
        sa.Column("difficulty", sa.String(8), nullable=False),
        sa.Column("category", sa.String(128), nullable=True),
        sa.Column("source_info", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("difficulty IN ('easy','medium','hard')", name="ck_live_questions_difficulty"),
    )
    op.create_index("idx_live_questions_difficulty_category", "live_questions", ["difficulty", "category"])

    op.create_table(
        "live_rooms",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("host_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'waiting'")),
        sa.Column("current_question_index", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("question_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("settings", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("question_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('waiting','active','finished')", name="ck_live_rooms_status"),
        sa.CheckConstraint("current_question_index >= 0", name="ck_live_rooms_question_index_non_negative"),
        sa.CheckConstraint(
            "status != 'finished' OR question_started_at IS NULL",
            name="ck_live_rooms_finished_has_no_question_start",
        ),
    )
    op.create_index("uq_live_rooms_code", "live_rooms", ["code"], unique=True)
    op.create_index("idx_live_rooms_status_created", "live_rooms", ["status", "created_at"])

    op.create_table(
        "live_participants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("room_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("player_id", sa.String(64), nullable=True),
        sa.Column("nickname", sa.String(32), nullable=False),
        sa.Column("avatar", sa.String(64), nullable=True),
        sa.Column("team", sa.String(8), nullable=True),
        sa.Column("score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("streak", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("score >= 0", name="ck_live_participants_score_non_negative"),
        sa.CheckConstraint("streak >= 0", name="ck_live_participants_streak_non_negative"),
        sa.CheckConstraint("team IS NULL OR team IN ('red','blue')", name="ck_live_participants_team"),
        sa.ForeignKeyConstraint(["room_id"], ["live_rooms.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("room_id", "player_id", name="uq_live_participants_room_player"),
    )
    op.create_index("idx_live_participants_room_joined", "live_participants", ["room_id", "joined_at"])

    op.create_table(
        "live_answers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("room_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("participant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("question_id", sa.String(64), nullable=False),
        sa.Column("selected_option_id", sa.String(64), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=False),
        sa.Column("response_time_ms", sa.Integer(), nullable=False),
        sa.Column("points_earned", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("response_time_ms >= 0", name="ck_live_answers_response_time_non_negative"),
        sa.CheckConstraint("points_earned >= 0", name="ck_live_answers_points_non_negative"),
        sa.CheckConstraint(
            "selected_option_id IS NOT NULL OR is_correct = false",
            name="ck_live_answers_timeout_is_incorrect",
        ),
        sa.ForeignKeyConstraint(["room_id"], ["live_rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["participant_id"], ["live_participants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["question_id"], ["live_questions.id"]),
    )
    op.create_index("idx_live_answers_room_question", "live_answers", ["room_id", "question_id"])
    op.create_index(
        "idx_live_answers_participant_created",
        "live_answers",
        ["room_id", "participant_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_live_answers_participant_created", table_name="live_answers")
    op.drop_index("idx_live_answers_room_question", table_name="live_answers")
    op.drop_table("live_answers")
    op.drop_index("idx_live_participants_room_joined", table_name="live_participants")
    op.drop_table("live_participants")
    op.drop_index("idx_live_rooms_status_created", table_name="live_rooms")
    op.drop_index("uq_live_rooms_code", table_name="live_rooms")
    op.drop_table("live_rooms")
    op.drop_index("idx_live_questions_difficulty_category", table_name="live_questions")
    op.drop_table("live_questions")
