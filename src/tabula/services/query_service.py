"""Query planning: turns a query spec into index predicates over record documents.

Resolution order:
  1. merge the named view's equality filters (explicit filters win per field)
  2. rewrite each filter into an EXISTS predicate over the secondary index
  3. intersect with the full-text match set when ``full_text`` is given
  4. order by a sortable field's typed index column, else newest first
  5. apply skip/take after ordering
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from loguru import logger
from sqlalchemy import ColumnElement, Select

from tabula.models.record import Record
from tabula.repository.record_index_repository import RecordIndexRepository
from tabula.repository.record_repository import RecordRepository
from tabula.schema import types
from tabula.schema.catalog import ensure_field_exists
from tabula.schema.types import CanonicalValue, FilterOperator
from tabula.schemas.query import QueryFilter, QuerySpec
from tabula.schemas.table import FieldSchema, TableSchema, ViewSchema
from tabula.services.exceptions import SchemaError, UnsupportedOperatorError
from tabula.services.search_service import SearchIndexer


@dataclass
class QueryPlan:
    """Everything needed to run (or count) a query."""

    conditions: List[ColumnElement[bool]]
    order_field: Optional[FieldSchema] = None
    descending: bool = False
    skip: Optional[int] = None
    take: Optional[int] = None
    # True when the full-text match set was empty, so nothing can match
    empty: bool = False


class QueryPlanner:
    """Builds and executes record queries against the secondary index."""

    def __init__(
        self,
        record_repository: RecordRepository,
        index_repository: RecordIndexRepository,
        search: SearchIndexer,
    ):
        self.records = record_repository
        self.index = index_repository
        self.search = search

    async def plan(self, table: TableSchema, spec: Optional[QuerySpec] = None) -> QueryPlan:
        """Resolve a spec against the table definition.

        Raises:
            SchemaError: on an unknown field or view, or a malformed view filter.
            UnsupportedOperatorError: on an operator the field's type does not define.
            TypeMismatchError: on a filter value that does not parse into the field's type.
        """
        spec = spec or QuerySpec()
        view = self._resolve_view(table, spec.view)

        conditions: List[ColumnElement[bool]] = []
        for query_filter in self.effective_filters(table, spec, view):
            condition = self._filter_condition(table, query_filter)
            if condition is not None:
                conditions.append(condition)

        plan = QueryPlan(conditions=conditions, skip=spec.skip, take=spec.take)

        if spec.full_text and spec.full_text.strip():
            matching = await self.search.match_record_ids(table.id, spec.full_text)
            logger.debug(f"Full-text '{spec.full_text}' matched {len(matching)} records")
            if not matching:
                plan.empty = True
            plan.conditions.append(Record.id.in_(list(matching)))

        order_by, descending = spec.order_by, spec.descending
        if not order_by and view is not None and view.sort_expression:
            order_by, descending = parse_sort_expression(view.sort_expression)
        if order_by:
            field = ensure_field_exists(table, order_by)
            if field.is_sortable:
                plan.order_field = field
                plan.descending = descending
            else:
                logger.debug(f"Field '{field.name}' is not sortable; using default ordering")

        if plan.take is None and view is not None and view.page_size:
            plan.take = view.page_size

        return plan

    def effective_filters(
        self, table: TableSchema, spec: QuerySpec, view: Optional[ViewSchema]
    ) -> List[QueryFilter]:
        """Explicit filters plus the view's equality filters on fields not already filtered."""
        filters = list(spec.filters)
        if view is None:
            return filters

        try:
            view_filters = view.equality_filters()
        except ValueError as e:
            raise SchemaError(f"Invalid view definition for view {view.name}: {e}") from e

        explicit = {f.field.casefold() for f in filters}
        for field_name, value in view_filters.items():
            if field_name.casefold() not in explicit:
                filters.append(QueryFilter(field=field_name, value=value))
        return filters

    def select(self, table: TableSchema, plan: QueryPlan) -> Select:
        query = self.records.select_for_table(table.id).where(*plan.conditions)

        if plan.order_field is not None:
            query = self.index.order_by_field(
                query,
                table.id,
                plan.order_field.name,
                types.index_data_type(plan.order_field),
                plan.descending,
            )
        else:
            query = query.order_by(Record.created_at.desc(), Record.id)

        if plan.skip:
            query = query.offset(plan.skip)
        if plan.take is not None:
            query = query.limit(plan.take)
        return query

    async def execute(self, table: TableSchema, spec: Optional[QuerySpec] = None) -> Sequence[Record]:
        plan = await self.plan(table, spec)
        if plan.empty:
            return []
        return await self.records.find_all(self.select(table, plan))

    async def count(self, table: TableSchema, spec: Optional[QuerySpec] = None) -> int:
        """Number of records the filters match; ordering and paging are ignored."""
        plan = await self.plan(table, spec)
        if plan.empty:
            return 0
        query = self.records.select_for_table(table.id).where(*plan.conditions)
        return await self.records.count(query)

    # --- Filter rewriting ---

    def _resolve_view(self, table: TableSchema, view_name: Optional[str]) -> Optional[ViewSchema]:
        if not view_name:
            return None
        view = table.get_view(view_name)
        if view is None:
            raise SchemaError(f"View '{view_name}' is not defined for table {table.name}")
        return view

    def _filter_condition(
        self, table: TableSchema, query_filter: QueryFilter
    ) -> Optional[ColumnElement[bool]]:
        field = ensure_field_exists(table, query_filter.field)
        data_type = types.index_data_type(field)

        if query_filter.operator not in types.allowed_operators(data_type):
            raise UnsupportedOperatorError(
                field.name, query_filter.operator.value, data_type.value
            )

        # null or blank values leave the filter out
        if _is_blank(query_filter.value):
            return None

        value = self._filter_value(field, query_filter.operator, query_filter.value)
        return self.index.filter_predicate(
            table.id, field.name, data_type, query_filter.operator, value
        )

    @staticmethod
    def _filter_value(field: FieldSchema, operator: FilterOperator, raw: Any) -> CanonicalValue:
        # substrings and computed text are matched as plain text
        if field.is_computed or operator == FilterOperator.CONTAINS:
            return raw if isinstance(raw, str) else types.format_value(raw)
        return types.normalize(field, raw)


def parse_sort_expression(expression: str) -> tuple[Optional[str], bool]:
    """``"Name"``, ``"Name asc"`` or ``"Name desc"`` -> (field name, descending)."""
    parts = expression.strip().rsplit(None, 1)
    if len(parts) == 2 and parts[1].lower() in ("asc", "desc"):
        return parts[0].strip(), parts[1].lower() == "desc"
    return expression.strip() or None, False


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
