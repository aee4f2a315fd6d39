"""init docscan schema

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "bank_accounts",
        _uuid_pk(),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("bank_name", sa.String(length=255)),
        sa.Column("account_number", sa.String(length=64)),
        sa.Column("currency", sa.String(length=10)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("idx_bank_accounts_owner", "bank_accounts", ["owner_id"])

    op.create_table(
        "csv_parsing_rules",
        _uuid_pk(),
        sa.Column("bank_identifier", sa.String(length=128), nullable=False),
        sa.Column("bank_display_name", sa.String(length=255), nullable=False),
        sa.Column("header_row", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("data_start_row", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("skip_footer_rows", sa.Integer()),
        sa.Column("delimiter", sa.String(length=4)),
        sa.Column("date_column", sa.String(length=255)),
        sa.Column("date_format", sa.String(length=32), nullable=False, server_default="YYYY-MM-DD"),
        sa.Column("description_column", sa.String(length=255)),
        sa.Column("amount_column", sa.String(length=255)),
        sa.Column("debit_column", sa.String(length=255)),
        sa.Column("credit_column", sa.String(length=255)),
        sa.Column("balance_column", sa.String(length=255)),
        sa.Column("reference_column", sa.String(length=255)),
        sa.Column("amount_format", sa.String(length=16), nullable=False, server_default="sign"),
        sa.Column("type_detection", sa.String(length=32), nullable=False, server_default="sign"),
        sa.Column("debit_keywords", postgresql.JSONB()),
        sa.Column("thousands_separator", sa.String(length=4)),
        sa.Column("decimal_separator", sa.String(length=4), nullable=False, server_default="."),
        sa.Column("currency_symbol", sa.String(length=8)),
        sa.Column("sample_headers", postgresql.JSONB()),
        sa.Column("sample_row", postgresql.JSONB()),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("amount_format IN ('sign', 'absolute')", name="ck_csv_rules_amount_format"),
        sa.CheckConstraint(
            "type_detection IN ('sign', 'separate_columns', 'keyword')",
            name="ck_csv_rules_type_detection",
        ),
    )
    op.create_index("idx_csv_rules_bank_owner", "csv_parsing_rules", ["bank_identifier", "created_by"])
    op.create_index("idx_csv_rules_bank_confirmed", "csv_parsing_rules", ["bank_identifier", "confirmed_at"])

    op.create_table(
        "extraction_templates",
        _uuid_pk(),
        sa.Column("bank_name", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255)),
        sa.Column("mapping", postgresql.JSONB()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_extraction_templates_bank", "extraction_templates", ["bank_name"])

    op.create_table(
        "usage_records",
        _uuid_pk(),
        sa.Column("org_id", sa.String(length=128), nullable=False, server_default="personal"),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("usage_type", sa.String(length=32), nullable=False),
        sa.Column("ai_provider", sa.String(length=32), nullable=False),
        sa.Column("ai_model", sa.String(length=128), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pages_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rows_extracted", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("estimated_cost", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("error", sa.Text()),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('success', 'failed', 'needs_review')",
            name="ck_usage_records_status",
        ),
    )
    op.create_index("idx_usage_owner_ts", "usage_records", ["owner_id", "timestamp"])
    op.create_index("idx_usage_type", "usage_records", ["usage_type"])


def downgrade() -> None:
    op.drop_index("idx_usage_type", table_name="usage_records")
    op.drop_index("idx_usage_owner_ts", table_name="usage_records")
    op.drop_table("usage_records")

    op.drop_index("idx_extraction_templates_bank", table_name="extraction_templates")
    op.drop_table("extraction_templates")

    op.drop_index("idx_csv_rules_bank_confirmed", table_name="csv_parsing_rules")
    op.drop_index("idx_csv_rules_bank_owner", table_name="csv_parsing_rules")
    op.drop_table("csv_parsing_rules")

    op.drop_index("idx_bank_accounts_owner", table_name="bank_accounts")
    op.drop_table("bank_accounts")
