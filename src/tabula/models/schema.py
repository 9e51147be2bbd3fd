"""Catalog models: user-defined tables with their fields and views."""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tabula.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchemaTable(Base):
    """A runtime-defined table.

    The name is an immutable slug used by lookup fields to reference the table.
    Fields and views are owned by the table and deleted with it.
    """

    __tablename__ = "schema_table"
    __table_args__ = (UniqueConstraint("name", name="uix_schema_table_name"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128))
    display_name: Mapped[str] = mapped_column(String(128))
    description: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    supports_soft_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    has_audit_trail: Mapped[bool] = mapped_column(Boolean, default=False)

    default_view: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    row_label_template: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    fields: Mapped[List["SchemaField"]] = relationship(
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="SchemaField.position",
    )
    views: Mapped[List["SchemaView"]] = relationship(
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="SchemaView.position",
    )

    def __repr__(self) -> str:
        return f"SchemaTable(id={self.id}, name='{self.name}')"


class SchemaField(Base):
    """A typed column declared on a runtime table."""

    __tablename__ = "schema_field"
    __table_args__ = (
        UniqueConstraint("table_id", "name", name="uix_schema_field_table_name"),
        Index("ix_schema_field_table_position", "table_id", "position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    table_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schema_table.id", ondelete="CASCADE")
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    name: Mapped[str] = mapped_column(String(128))
    label: Mapped[str] = mapped_column(String(128))
    data_type: Mapped[str] = mapped_column(String(32))

    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    is_unique: Mapped[bool] = mapped_column(Boolean, default=False)
    is_indexed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_filterable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_sortable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_searchable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_list_visible: Mapped[bool] = mapped_column(Boolean, default=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    is_read_only: Mapped[bool] = mapped_column(Boolean, default=False)
    is_computed: Mapped[bool] = mapped_column(Boolean, default=False)

    min_length: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_length: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # decimal text, kept exact instead of going through sqlite REAL
    min_value: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    max_value: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    validation_pattern: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    enum_values: Mapped[Optional[str]] = mapped_column(String(4000), nullable=True)
    default_value: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    lookup_target: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    lookup_field: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    computed_expression: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    table: Mapped[SchemaTable] = relationship(back_populates="fields")

    def __repr__(self) -> str:
        return f"SchemaField(name='{self.name}', data_type='{self.data_type}')"


class SchemaView(Base):
    """A named equality-filter and sort preset over a table."""

    __tablename__ = "schema_view"
    __table_args__ = (UniqueConstraint("table_id", "name", name="uix_schema_view_table_name"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    table_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schema_table.id", ondelete="CASCADE")
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    name: Mapped[str] = mapped_column(String(128))
    display_name: Mapped[str] = mapped_column(String(128))
    description: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    query_definition: Mapped[str] = mapped_column(Text, default="{}")
    sort_expression: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    page_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    visualization: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    table: Mapped[SchemaTable] = relationship(back_populates="views")

    def __repr__(self) -> str:
        return f"SchemaView(name='{self.name}', default={self.is_default})"
