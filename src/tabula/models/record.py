"""Row storage: versioned documents, their secondary index and audit trail."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from tabula.models.base import Base


class Record(Base):
    """One row of a runtime table, stored as an opaque JSON document.

    ``data`` holds the storage form of the canonical values (decimals, instants and
    ids as strings). A soft-deleted row keeps its document and gets ``deleted_at``.
    """

    __tablename__ = "record"
    __table_args__ = (
        Index("ix_record_table_created", "table_id", "created_at"),
        Index("ix_record_table_deleted", "table_id", "deleted_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    table_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schema_table.id", ondelete="CASCADE")
    )
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)

    def __repr__(self) -> str:
        return f"Record(id={self.id}, table_id={self.table_id}, version={self.version})"


class RecordIndex(Base):
    """Flat secondary index: one typed value per (table, record, field).

    Exactly one of the value columns is set; the check constraint turns a row
    without a value into an IntegrityError at flush time. Decimal rows also carry
    ``decimal_key``, since their float only serves ordering and ranges.
    """

    __tablename__ = "record_index"
    __table_args__ = (
        CheckConstraint(
            "(string_value IS NOT NULL) + (integer_value IS NOT NULL)"
            " + (number_value IS NOT NULL) + (date_value IS NOT NULL)"
            " + (bool_value IS NOT NULL) = 1",
            name="ck_record_index_single_value",
        ),
        Index("ix_record_index_string", "table_id", "field_name", "string_value"),
        Index("ix_record_index_integer", "table_id", "field_name", "integer_value"),
        Index("ix_record_index_number", "table_id", "field_name", "number_value"),
        Index("ix_record_index_decimal", "table_id", "field_name", "decimal_key"),
        Index("ix_record_index_date", "table_id", "field_name", "date_value"),
        Index("ix_record_index_record", "record_id", "field_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("record.id", ondelete="CASCADE")
    )
    field_name: Mapped[str] = mapped_column(String(128))

    string_value: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    integer_value: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    number_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # exact text of a Decimal beside its float; equality and uniqueness use this
    decimal_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    date_value: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    bool_value: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    def __repr__(self) -> str:
        return f"RecordIndex(record_id={self.record_id}, field_name='{self.field_name}')"


class RecordAudit(Base):
    """A change set appended for tables that keep an audit trail.

    Not tied to ``record`` by foreign key so history survives hard deletes.
    """

    __tablename__ = "record_audit"
    __table_args__ = (Index("ix_record_audit_record", "table_id", "record_id", "version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    change_type: Mapped[str] = mapped_column(String(16))
    version: Mapped[int] = mapped_column(Integer)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    previous_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
