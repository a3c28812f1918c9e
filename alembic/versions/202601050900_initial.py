"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


def _record_type() -> sa.Enum:
    return sa.Enum("income", "expense", name="recordtype")


def upgrade():
    op.create_table(
        "household_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, default=1),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=200)),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_members_household_position",
        "household_members",
        ["household_id", "position", "id"],
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", _record_type(), nullable=False),
        sa.Column(
            "is_system", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "household_id", "type", "name", name="uq_category_household_type_name"
        ),
    )

    op.create_table(
        "financial_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, default=1),
        sa.Column("type", _record_type(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "payer_user_id",
            sa.Integer(),
            sa.ForeignKey("household_members.id"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_records_amount_positive"),
    )
    op.create_index(
        "ix_records_household_date", "financial_records", ["household_id", "date"]
    )
    op.create_index(
        "ix_records_household_payer_date",
        "financial_records",
        ["household_id", "payer_user_id", "date"],
    )

    op.create_table(
        "recurring_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, default=1),
        sa.Column("type", _record_type(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column(
            "frequency",
            sa.Enum(
                "weekly",
                "monthly",
                "monthly_alternating",
                "yearly",
                name="frequency",
            ),
            nullable=False,
            server_default="monthly",
        ),
        sa.Column("description", sa.Text()),
        sa.Column(
            "payer_user_id",
            sa.Integer(),
            sa.ForeignKey("household_members.id"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_household_start",
        "recurring_records",
        ["household_id", "start_date"],
    )


def downgrade():
    op.drop_index("ix_recurring_household_start", table_name="recurring_records")
    op.drop_table("recurring_records")
    op.drop_index("ix_records_household_payer_date", table_name="financial_records")
    op.drop_index("ix_records_household_date", table_name="financial_records")
    op.drop_table("financial_records")
    op.drop_table("categories")
    op.drop_index("ix_members_household_position", table_name="household_members")
    op.drop_table("household_members")
