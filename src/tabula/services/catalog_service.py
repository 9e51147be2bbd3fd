"""Service for the schema catalog."""

import uuid
from typing import Any, List, Mapping, Optional, TypeAlias

from loguru import logger
from sqlalchemy.exc import IntegrityError

from tabula.models.schema import SchemaField, SchemaTable, SchemaView
from tabula.repository.table_repository import TableRepository
from tabula.schema import catalog
from tabula.schemas.table import FieldSchema, TableSchema, ViewSchema
from tabula.services.exceptions import NotFoundError, SchemaError

TableRef: TypeAlias = uuid.UUID | str


def parse_table_ref(ref: TableRef) -> uuid.UUID | str:
    """A table is referenced by id (UUID or its text form) or by name."""
    if isinstance(ref, uuid.UUID):
        return ref
    try:
        return uuid.UUID(ref.strip())
    except ValueError:
        return ref.strip()


class CatalogService:
    """Creates and reads table definitions.

    The catalog is loaded from the database on every call; nothing is cached here.
    """

    def __init__(self, table_repository: TableRepository):
        self.repository = table_repository

    async def create_table(self, definition: TableSchema | Mapping[str, Any]) -> TableSchema:
        """Validate, normalize and persist a new table definition.

        Raises:
            SchemaError: on an invalid definition, a duplicate table name or an
                unknown lookup target.
        """
        table = (
            definition.model_copy(deep=True)
            if isinstance(definition, TableSchema)
            else TableSchema.model_validate(definition)
        )

        catalog.validate_table_definition(table)
        catalog.normalize_table_definition(table)
        catalog.ensure_default_views(table)

        if await self.repository.get_by_name(table.name) is not None:
            raise SchemaError(f"Table {table.name} already exists")

        for field in table.fields:
            if field.lookup_target:
                await self._ensure_lookup_target(table, field)

        model = to_model(table)
        try:
            await self.repository.add(model)
        except IntegrityError as e:
            raise SchemaError(f"Table {table.name} could not be created: {e.orig}") from e

        logger.info(
            f"Created table {table.name} (id={table.id}, fields={len(table.fields)}, "
            f"views={len(table.views)})"
        )
        return await self.require_table(table.id)

    async def generate_simple_views(self, table_ref: TableRef) -> TableSchema:
        """Ensure a persisted table has its default view. Safe to call repeatedly."""
        model = await self._require_model(table_ref)
        table = to_schema(model)

        existing = {view.name for view in table.views}
        if catalog.ensure_default_views(table) == 0:
            logger.debug(f"Table {table.name} already has a default view")
            return table

        catalog.normalize_table_definition(table)
        for view in table.views:
            if view.name in existing:
                continue
            await self.repository.add_view(
                table.id,
                _view_model(view, position=len(existing)),
                default_view=table.default_view,
            )
            logger.info(f"Generated view {view.name} for table {table.name}")

        return await self.require_table(table.id)

    async def get_table(self, table_ref: TableRef) -> Optional[TableSchema]:
        """Read-only projection of a table by id or name, or None."""
        model = await self._find_model(table_ref)
        return to_schema(model) if model is not None else None

    async def require_table(self, table_ref: TableRef) -> TableSchema:
        table = await self.get_table(table_ref)
        if table is None:
            raise NotFoundError(f"Table {table_ref} was not found")
        return table

    async def get_tables(self) -> List[TableSchema]:
        return [to_schema(model) for model in await self.repository.list_tables()]

    async def _find_model(self, table_ref: TableRef) -> Optional[SchemaTable]:
        ref = parse_table_ref(table_ref)
        if isinstance(ref, uuid.UUID):
            return await self.repository.get_by_id(ref)
        return await self.repository.get_by_name(ref)

    async def _require_model(self, table_ref: TableRef) -> SchemaTable:
        model = await self._find_model(table_ref)
        if model is None:
            raise NotFoundError(f"Table {table_ref} was not found")
        return model

    async def _ensure_lookup_target(self, table: TableSchema, field: FieldSchema) -> None:
        ref = parse_table_ref(field.lookup_target)
        # a lookup may point back at the table being created
        if ref == table.id or (isinstance(ref, str) and ref.casefold() == table.name.casefold()):
            target = table
        else:
            target_model = await self._find_model(ref)
            if target_model is None:
                raise SchemaError(
                    f"Lookup field '{field.name}' targets unknown table {field.lookup_target}"
                )
            target = to_schema(target_model)

        if field.lookup_field and target.get_field(field.lookup_field) is None:
            raise SchemaError(
                f"Lookup field '{field.name}' label field '{field.lookup_field}' is not "
                f"defined for table {target.name}"
            )


# --- Conversion between catalog rows and definitions ---


def to_schema(model: SchemaTable) -> TableSchema:
    return TableSchema.model_validate(model)


def to_model(table: TableSchema) -> SchemaTable:
    model = SchemaTable(
        id=table.id,
        name=table.name.strip(),
        display_name=table.title,
        description=table.description,
        is_system=table.is_system,
        supports_soft_delete=table.supports_soft_delete,
        has_audit_trail=table.has_audit_trail,
        default_view=table.default_view,
        row_label_template=table.row_label_template,
    )
    model.fields = [_field_model(f, position) for position, f in enumerate(table.fields)]
    model.views = [_view_model(v, position) for position, v in enumerate(table.views)]
    return model


def _field_model(field: FieldSchema, position: int) -> SchemaField:
    data = field.model_dump(exclude={"min_value", "max_value", "enum_values", "data_type"})
    return SchemaField(
        **data,
        position=position,
        data_type=field.data_type.value,
        min_value=str(field.min_value) if field.min_value is not None else None,
        max_value=str(field.max_value) if field.max_value is not None else None,
        enum_values=",".join(field.enum_values) if field.enum_values else None,
    )


def _view_model(view: ViewSchema, position: int) -> SchemaView:
    return SchemaView(**view.model_dump(), position=position)
