"""initial models

Order ledger, enrollments, cart, catalog pricing, platform settings and logs.
Matches SQLModel.metadata as of this revision; init_db() creates the same
tables with create_all for fresh development databases.

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op


revision: str = "0001_initial_models"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_str = sqlmodel.sql.sqltypes.AutoString


def upgrade() -> None:
    op.create_table(
        "course",
        sa.Column("id", _str(), primary_key=True),
        sa.Column("title", _str(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("instructor_id", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_course_instructor_id", "course", ["instructor_id"])

    op.create_table(
        "courseorder",
        sa.Column("id", _str(), primary_key=True),
        sa.Column("user_id", _str(), nullable=False),
        sa.Column("course_id", _str(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("payment_method", _str(), nullable=False),
        sa.Column("payment_reference", _str(), nullable=True),
        sa.Column("transaction_uuid", _str(), nullable=True),
        sa.Column("status", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    for column in ("user_id", "course_id", "payment_reference", "transaction_uuid", "status"):
        op.create_index(f"ix_courseorder_{column}", "courseorder", [column])

    op.create_table(
        "enrollment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", _str(), nullable=False),
        sa.Column("course_id", _str(), nullable=False),
        sa.Column("enrolled_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),
    )
    op.create_index("ix_enrollment_user_id", "enrollment", ["user_id"])
    op.create_index("ix_enrollment_course_id", "enrollment", ["course_id"])

    op.create_table(
        "cartitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", _str(), nullable=False),
        sa.Column("course_id", _str(), nullable=False),
        sa.Column("added_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "course_id", name="uq_cartitem_user_course"),
    )
    op.create_index("ix_cartitem_user_id", "cartitem", ["user_id"])

    op.create_table(
        "platformsetting",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("setting_key", _str(length=64), nullable=False),
        sa.Column("setting_value", _str(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("updated_by", _str(), nullable=True),
    )
    op.create_index("ix_platformsetting_setting_key", "platformsetting", ["setting_key"], unique=True)

    op.create_table(
        "auditlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event", _str(), nullable=False),
        sa.Column("user_id", _str(), nullable=True),
        sa.Column("detail", _str(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_auditlog_event", "auditlog", ["event"])
    op.create_index("ix_auditlog_user_id", "auditlog", ["user_id"])

    op.create_table(
        "errorlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", _str(), nullable=True),
        sa.Column("endpoint", _str(), nullable=True),
        sa.Column("method", _str(), nullable=True),
        sa.Column("error_message", _str(), nullable=True),
        sa.Column("stack_trace", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_errorlog_user_id", "errorlog", ["user_id"])


def downgrade() -> None:
    for table in ("errorlog", "auditlog", "platformsetting", "cartitem", "enrollment", "courseorder", "course"):
        op.drop_table(table)
