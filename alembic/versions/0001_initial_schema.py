"""initial schema

Revision ID: 0001_initial
Revises:
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("grade", sa.Integer(), nullable=True),
        _ts("created_at", nullable=False),
        _ts("last_login"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("jti", sa.String(64), nullable=False),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        _ts("expires_at", nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_refresh_tokens_jti", "refresh_tokens", ["jti"], unique=True)
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("subject", sa.String(100), nullable=False),
        sa.Column("grade", sa.Integer(), nullable=False),
        sa.Column("chapters", sa.JSON(), nullable=False),
        sa.Column("topics", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_courses_created_by", "courses", ["created_by"])

    op.create_table(
        "enrollments",
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column(
            "course_id",
            sa.Integer(),
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _ts("enrolled_at"),
    )

    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("chapter_name", sa.String(200), nullable=False),
        sa.Column("topic", sa.String(200), nullable=False),
        sa.Column("difficulty", sa.String(8), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("case_study", sa.Text(), nullable=True),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("numerical_answer", sa.JSON(), nullable=True),
        sa.Column("expected_answer", sa.Text(), nullable=True),
        sa.Column("correct_answer", sa.Text(), nullable=False),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=False),
        sa.Column("marks", sa.Float(), nullable=False),
        sa.Column("negative_marks", sa.Float(), nullable=False),
        sa.Column("recommended_time", sa.Integer(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("correct_attempts", sa.Integer(), nullable=False),
        sa.Column("total_attempts", sa.Integer(), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_questions_course_id", "questions", ["course_id"])
    op.create_index("ix_questions_topic", "questions", ["topic"])
    op.create_index("ix_questions_difficulty", "questions", ["difficulty"])

    op.create_table(
        "quizzes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("difficulty", sa.String(8), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("total_marks", sa.Float(), nullable=False),
        sa.Column("passing_percentage", sa.Float(), nullable=False),
        sa.Column("attempts_allowed", sa.Integer(), nullable=False),
        sa.Column("question_config", sa.JSON(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("instructions", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        _ts("start_time"),
        _ts("end_time"),
        _ts("visible_from"),
        sa.Column("algorithm_version", sa.String(32), nullable=False),
        sa.Column("total_attempts", sa.Integer(), nullable=False),
        sa.Column("average_score", sa.Float(), nullable=False),
        sa.Column("pass_rate", sa.Float(), nullable=False),
        sa.Column("average_time_spent", sa.Float(), nullable=False),
        _ts("published_at"),
        _ts("archived_at"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_quizzes_course_id", "quizzes", ["course_id"])
    op.create_index("ix_quizzes_created_by", "quizzes", ["created_by"])
    op.create_index("ix_quizzes_status", "quizzes", ["status"])

    op.create_table(
        "quiz_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("quiz_id", sa.Integer(), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("selected_questions", sa.JSON(), nullable=False),
        sa.Column("current_question_index", sa.Integer(), nullable=False),
        _ts("started_at", nullable=False),
        _ts("expires_at", nullable=False),
        _ts("submitted_at"),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("time_spent", sa.Integer(), nullable=False),
        _ts("last_active_at", nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("auto_score", sa.Float(), nullable=False),
        sa.Column("manual_score", sa.Float(), nullable=False),
        sa.Column("total_score", sa.Float(), nullable=False),
        sa.Column("total_marks", sa.Float(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.Column("passing_percentage", sa.Float(), nullable=False),
        sa.Column("pending_manual_evaluation", sa.Boolean(), nullable=False),
        sa.Column("questions_for_manual_evaluation", sa.JSON(), nullable=False),
        sa.Column("algorithm_version", sa.String(32), nullable=False),
        sa.Column("selection_criteria", sa.JSON(), nullable=False),
        sa.Column("tab_switch_count", sa.Integer(), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_quiz_sessions_quiz_id", "quiz_sessions", ["quiz_id"])
    op.create_index("ix_quiz_sessions_student_id", "quiz_sessions", ["student_id"])
    op.create_index("ix_quiz_sessions_course_id", "quiz_sessions", ["course_id"])
    op.create_index("ix_quiz_sessions_quiz_student", "quiz_sessions", ["quiz_id", "student_id"])
    op.create_index("ix_quiz_sessions_status_expires", "quiz_sessions", ["status", "expires_at"])

    op.create_table(
        "session_answers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("quiz_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("answer", sa.JSON(), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("marks_awarded", sa.Float(), nullable=False),
        sa.Column("negative_marks_applied", sa.Float(), nullable=False),
        sa.Column("time_spent", sa.Integer(), nullable=False),
        sa.Column("is_visited", sa.Boolean(), nullable=False),
        sa.Column("is_marked_for_review", sa.Boolean(), nullable=False),
        sa.Column("manual_feedback", sa.Text(), nullable=True),
        sa.Column("evaluated_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("evaluated_at"),
        sa.UniqueConstraint("session_id", "question_id", name="uq_session_answers_session_id"),
    )
    op.create_index("ix_session_answers_session_id", "session_answers", ["session_id"])

    op.create_table(
        "evaluation_results",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("quiz_sessions.id"), nullable=False),
        sa.Column("quiz_id", sa.Integer(), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("auto_score", sa.Float(), nullable=False),
        sa.Column("manual_score", sa.Float(), nullable=False),
        sa.Column("final_score", sa.Float(), nullable=False),
        sa.Column("total_marks", sa.Float(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("pass_fail", sa.String(8), nullable=False),
        sa.Column("grade", sa.String(4), nullable=False),
        sa.Column("analysis", sa.JSON(), nullable=False),
        sa.Column("manual_evaluations", sa.JSON(), nullable=False),
        sa.Column("evaluated_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("evaluated_at"),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("session_id", name="uq_evaluation_results_session_id"),
    )
    op.create_index("ix_evaluation_results_quiz_id", "evaluation_results", ["quiz_id"])
    op.create_index("ix_evaluation_results_student_id", "evaluation_results", ["student_id"])

    op.create_table(
        "ai_question_drafts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("chapter_name", sa.String(200), nullable=False),
        sa.Column("topic", sa.String(200), nullable=False),
        sa.Column("difficulty", sa.String(8), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("source_type", sa.String(16), nullable=False),
        sa.Column("model_used", sa.String(64), nullable=False),
        sa.Column("prompt_version", sa.String(16), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("validation_flags", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("job_id", sa.String(64), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("approved_at"),
        sa.Column("final_question_id", sa.Integer(), sa.ForeignKey("questions.id"), nullable=True),
        sa.Column("rejected_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("rejected_at"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("edit_history", sa.JSON(), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_ai_question_drafts_course_id", "ai_question_drafts", ["course_id"])
    op.create_index("ix_ai_question_drafts_status", "ai_question_drafts", ["status"])
    op.create_index("ix_ai_question_drafts_job_id", "ai_question_drafts", ["job_id"])


def downgrade() -> None:
    op.drop_table("ai_question_drafts")
    op.drop_table("evaluation_results")
    op.drop_table("session_answers")
    op.drop_table("quiz_sessions")
    op.drop_table("quizzes")
    op.drop_table("questions")
    op.drop_table("enrollments")
    op.drop_table("courses")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
