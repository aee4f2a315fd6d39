import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


class BankAccount(Base):
    """Accounts a user has previously confirmed; read for bank-name inference."""

    __tablename__ = "bank_accounts"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False)
    bank_name = Column(String(255))
    account_number = Column(String(64))
    currency = Column(String(10))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_bank_accounts_owner", "owner_id"),)


class CsvParsingRuleSet(Base):
    __tablename__ = "csv_parsing_rules"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    bank_identifier = Column(String(128), nullable=False)
    bank_display_name = Column(String(255), nullable=False)

    header_row = Column(Integer, nullable=False, default=0, server_default=text("0"))
    data_start_row = Column(Integer, nullable=False, default=1, server_default=text("1"))
    skip_footer_rows = Column(Integer)
    delimiter = Column(String(4))

    date_column = Column(String(255))
    date_format = Column(String(32), nullable=False, default="YYYY-MM-DD")
    description_column = Column(String(255))
    amount_column = Column(String(255))
    debit_column = Column(String(255))
    credit_column = Column(String(255))
    balance_column = Column(String(255))
    reference_column = Column(String(255))

    amount_format = Column(String(16), nullable=False, default="sign")
    type_detection = Column(String(32), nullable=False, default="sign")
    debit_keywords = Column(JSON_TYPE)
    thousands_separator = Column(String(4))
    decimal_separator = Column(String(4), nullable=False, default=".")
    currency_symbol = Column(String(8))

    sample_headers = Column(JSON_TYPE)
    sample_row = Column(JSON_TYPE)

    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    confirmed_at = Column(DateTime(timezone=True))
    usage_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    last_used_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_csv_rules_bank_owner", "bank_identifier", "created_by"),
        Index("idx_csv_rules_bank_confirmed", "bank_identifier", "confirmed_at"),
    )


class ExtractionTemplate(Base):
    __tablename__ = "extraction_templates"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    bank_name = Column(String(255), nullable=False)
    name = Column(String(255))
    mapping = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_extraction_templates_bank", "bank_name"),)


class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    org_id = Column(String(128), nullable=False, default="personal")
    owner_id = Column(String(128), nullable=False)
    usage_type = Column(String(32), nullable=False)
    ai_provider = Column(String(32), nullable=False)
    ai_model = Column(String(128), nullable=False)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    pages_processed = Column(Integer, nullable=False, default=0)
    rows_extracted = Column(Integer, nullable=False, default=0)
    confidence = Column(Float, nullable=False, default=0.0)
    status = Column(String(16), nullable=False)
    processing_time_ms = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Numeric(12, 6), nullable=False, default=0)
    usage_meta = Column("metadata", JSON_TYPE)
    error = Column(Text)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_usage_owner_ts", "owner_id", "timestamp"),
        Index("idx_usage_type", "usage_type"),
    )
