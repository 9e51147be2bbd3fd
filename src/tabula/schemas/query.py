"""Query specification for record reads."""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tabula.schema.types import FilterOperator


class QueryFilter(BaseModel):
    """A single structured predicate: ``field <operator> value``."""

    field: str
    operator: FilterOperator = FilterOperator.EQUALS
    value: Any = None


class QuerySpec(BaseModel):
    """What to read from a table.

    ``view`` names a declared view whose equality filters are merged in (explicit
    filters win on the same field). ``skip``/``take`` apply after ordering.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    filters: List[QueryFilter] = Field(default_factory=list)
    full_text: Optional[str] = None
    order_by: Optional[str] = None
    descending: bool = False
    skip: Optional[int] = Field(None, ge=0)
    take: Optional[int] = Field(None, ge=0)
    view: Optional[str] = None
