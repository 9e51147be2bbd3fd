"""Table, field and view definitions.

These are both the input of ``create_table`` and the read-only projection returned
by ``get_table``; ORM rows are converted with ``model_validate(..., from_attributes=True)``.
Keys are accepted in snake_case or camelCase.
"""

import json
import uuid
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tabula.schema.types import DataType


class DefinitionModel(BaseModel):
    """Shared config for catalog definitions."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class FieldSchema(DefinitionModel):
    """A typed field declared on a table."""

    id: Optional[uuid.UUID] = None
    table_id: Optional[uuid.UUID] = None
    name: str = Field(..., min_length=1, max_length=128)
    label: Optional[str] = Field(None, max_length=128)
    data_type: DataType = DataType.TEXT

    is_required: bool = False
    is_unique: bool = False
    is_indexed: bool = False
    is_filterable: bool = False
    is_sortable: bool = False
    is_searchable: bool = False
    is_list_visible: bool = False
    is_hidden: bool = False
    is_read_only: bool = False
    is_computed: bool = False

    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=0)
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None
    validation_pattern: Optional[str] = None
    enum_values: List[str] = Field(default_factory=list)
    default_value: Optional[str] = None

    lookup_target: Optional[str] = Field(None, description="Target table name or id")
    lookup_field: Optional[str] = Field(None, description="Target field used as label")
    computed_expression: Optional[str] = None

    @field_validator("enum_values", mode="before")
    @classmethod
    def split_enum_values(cls, value: Any) -> Any:
        """Accept the comma separated form stored in the catalog."""
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("default_value", mode="before")
    @classmethod
    def stringify_default(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @property
    def is_lookup(self) -> bool:
        return self.data_type == DataType.LOOKUP and bool(self.lookup_target)

    @property
    def display_label(self) -> str:
        return self.label or self.name


class ViewSchema(DefinitionModel):
    """A named equality-filter preset over a table."""

    id: Optional[uuid.UUID] = None
    table_id: Optional[uuid.UUID] = None
    name: str = Field(..., min_length=1, max_length=128)
    display_name: Optional[str] = Field(None, max_length=128)
    description: Optional[str] = None
    query_definition: str = Field(default="{}", description="JSON map of field -> value")
    sort_expression: Optional[str] = None
    page_size: Optional[int] = Field(None, ge=1, le=500)
    visualization: Optional[str] = None
    is_default: bool = False

    @field_validator("query_definition", mode="before")
    @classmethod
    def dump_query_definition(cls, value: Any) -> Any:
        """Allow the filter map to be given as a dict."""
        if value is None:
            return "{}"
        if isinstance(value, dict):
            return json.dumps(value)
        return value

    def equality_filters(self) -> dict[str, Any]:
        """Decode the filter map.

        Raises:
            ValueError: if the definition is not a JSON object.
        """
        if not self.query_definition or not self.query_definition.strip():
            return {}
        decoded = json.loads(self.query_definition)
        if not isinstance(decoded, dict):
            raise ValueError(f"View {self.name} query definition must be a JSON object")
        return decoded


class TableSchema(DefinitionModel):
    """A runtime table with its ordered fields and views."""

    id: Optional[uuid.UUID] = None
    name: str = Field(..., min_length=1, max_length=128)
    display_name: Optional[str] = Field(None, max_length=128)
    description: Optional[str] = Field(None, max_length=1024)
    is_system: bool = False
    supports_soft_delete: bool = False
    has_audit_trail: bool = False
    default_view: Optional[str] = None
    row_label_template: Optional[str] = Field(None, max_length=256)

    fields: List[FieldSchema] = Field(default_factory=list)
    views: List[ViewSchema] = Field(default_factory=list)

    def get_field(self, name: str) -> Optional[FieldSchema]:
        """Find a field by name, ignoring case."""
        folded = name.casefold()
        return next((f for f in self.fields if f.name.casefold() == folded), None)

    def get_view(self, name: str) -> Optional[ViewSchema]:
        """Find a view by name, ignoring case."""
        folded = name.casefold()
        return next((v for v in self.views if v.name.casefold() == folded), None)

    @property
    def title(self) -> str:
        return self.display_name or self.name
