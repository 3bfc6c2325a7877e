"""create classrooms, profiles and progress tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "classrooms",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=80), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="student"),
        sa.Column("classroom_id", sa.String(length=36), sa.ForeignKey("classrooms.id"), nullable=True),
        sa.CheckConstraint("role IN ('student', 'teacher', 'head_teacher')", name="ck_profile_role"),
    )
    op.create_index("ix_profiles_full_name", "profiles", ["full_name"])
    op.create_table(
        "progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("classroom_id", sa.String(length=36), sa.ForeignKey("classrooms.id"), nullable=False),
        sa.Column("subject", sa.String(length=40), nullable=False, server_default="maths"),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint("score >= 0 AND score <= 100", name="ck_progress_score_range"),
    )
    op.create_index("ix_progress_student_id", "progress", ["student_id"])
    op.create_index("ix_progress_classroom_id", "progress", ["classroom_id"])


def downgrade():
    op.drop_index("ix_progress_classroom_id", table_name="progress")
    op.drop_index("ix_progress_student_id", table_name="progress")
    op.drop_table("progress")
    op.drop_index("ix_profiles_full_name", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("classrooms")
