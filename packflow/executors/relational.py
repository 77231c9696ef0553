"""Relational nodes: index, lookup joins, nested rows, extract and group by."""

from typing import Dict, List, Literal, Optional, Tuple

import pandas as pd
from pydantic import Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from packflow.exceptions import ConfigurationError, InvalidInputTypeError, ReferenceNotFoundError
from packflow.executors.common import (
    NodeParams,
    concat_rows,
    derived_schema,
    empty_selection,
    expect,
    format_number,
    split_lines,
    strict_number,
)
from packflow.node import NodeContext
from packflow.payloads import (
    DB_PREFIX,
    IndexedTable,
    NestedRow,
    NestedTableSelection,
    PackTable,
    TableSelection,
    file_tail,
    frame_from_rows,
)
from packflow.schema import FieldType, SchemaField, TableSchema

KEY_SEPARATOR = "|"
_KEY = "__packflow_key"
_ORDER = "__packflow_order"


def _key_series(rows: pd.DataFrame, columns: List[str]) -> pd.Series:
    if rows.empty:
        return pd.Series([], index=rows.index, dtype=object)
    return rows[columns].astype(str).agg(KEY_SEPARATOR.join, axis=1)


def _require_columns(rows: pd.DataFrame, columns: List[str], where: str) -> None:
    missing = [c for c in columns if c not in rows.columns]
    if missing:
        raise ReferenceNotFoundError(f"Column(s) {missing} not found in {where}")


def compare(cell, operator: str, value) -> bool:
    """Predicate used by nested aggregation and group-by conditions.

    Numeric when both sides parse as numbers, string comparison otherwise.
    """
    left, right = strict_number(cell), strict_number(value)
    if left is None or right is None:
        left, right = str(cell), str(value)
    if operator == "equals":
        return left == right
    if operator == "notEquals":
        return left != right
    if operator == "greaterThan":
        return left > right
    if operator == "lessThan":
        return left < right
    if operator == "greaterThanOrEqual":
        return left >= right
    if operator == "lessThanOrEqual":
        return left <= right
    raise ConfigurationError(f"Unknown operator '{operator}'")


Operator = Literal[
    "equals", "notEquals", "greaterThan", "lessThan", "greaterThanOrEqual", "lessThanOrEqual"
]


# -------------------------------------------------------------------------
# 1. Index table
# -------------------------------------------------------------------------


class IndexTableParams(NodeParams):
    index_columns: List[str] = Field(default_factory=list, description="Columns forming the key")

    @field_validator("index_columns", mode="before")
    @classmethod
    def _split(cls, value):
        return split_lines(value)


def build_index(tables: List[PackTable], columns: List[str]) -> IndexedTable:
    """Group the rows of ``tables`` by the ``|``-joined values of ``columns``.

    Rows with an empty cell in any key column are left out.
    """
    if not tables:
        return IndexedTable(index_columns=list(columns))

    rows = concat_rows(tables)
    _require_columns(rows, columns, tables[0].name)
    complete = rows[columns].astype(str).ne("").all(axis=1) if len(rows) else pd.Series([], dtype=bool)
    rows = rows[complete].reset_index(drop=True)
    keys = _key_series(rows, columns)

    index: Dict[str, pd.DataFrame] = {}
    if len(rows):
        for key, group in rows.groupby(keys, sort=False):
            index[str(key)] = group.reset_index(drop=True)

    first = tables[0]
    return IndexedTable(
        index_columns=list(columns),
        index=index,
        source_table=first.with_rows(rows),
    )


def index_table(context: NodeContext, params: IndexTableParams, data) -> IndexedTable:
    selection = expect(data, TableSelection)
    if not params.index_columns:
        raise ConfigurationError("Select at least one index column")
    indexed = build_index(selection.tables, params.index_columns)
    context.log.info("Built index", keys=len(indexed.index), columns=params.index_columns)
    return indexed


# -------------------------------------------------------------------------
# 2. Lookup (join)
# -------------------------------------------------------------------------


class LookupParams(NodeParams):
    lookup_columns: List[str] = Field(
        default_factory=list, description="Source column(s) matched against the index key"
    )
    join_type: Literal["inner", "left", "nested", "cross"] = Field("inner", description="Join type")
    index_columns: List[str] = Field(default_factory=list)
    index_join_columns: List[str] = Field(
        default_factory=list, description="Columns to auto-index a raw table on"
    )

    @model_validator(mode="before")
    @classmethod
    def _singular_aliases(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            for single, plural in (
                ("lookupColumn", "lookup_columns"),
                ("lookup_column", "lookup_columns"),
                ("indexJoinColumn", "index_join_columns"),
                ("index_join_column", "index_join_columns"),
            ):
                if single in data and plural not in data and to_camel(plural) not in data:
                    data[plural] = data.pop(single)
        return data

    @field_validator("lookup_columns", "index_columns", "index_join_columns", mode="before")
    @classmethod
    def _split(cls, value):
        return split_lines(value)


def _prefixed(rows: pd.DataFrame, prefix: str) -> pd.DataFrame:
    return rows.add_prefix(prefix)


def _column_prefixes(source: PackTable, lookup: PackTable) -> Tuple[str, str]:
    """Source and lookup column prefixes; a self-join moves the lookup side to ``lookup_<base>_``."""
    sp, lp = f"{source.base_name}_", f"{lookup.base_name}_"
    if sp == lp:
        lp = f"lookup_{lp}"
    return sp, lp


def _joined_table(
    name: str, rows: pd.DataFrame, source: PackTable, lookup: PackTable
) -> PackTable:
    sp, lp = _column_prefixes(source, lookup)
    schema = derived_schema(
        list(rows.columns),
        [(sp, source.schema), (lp, lookup.schema)],
        version=source.schema.version,
    )
    return PackTable(
        name=DB_PREFIX + name,
        file_name=f"{DB_PREFIX}{name}\\{file_tail(source.file_name)}",
        schema=schema,
        rows=rows.reset_index(drop=True),
        source=source.source,
    )


def _index_frame(indexed: IndexedTable, lookup_prefix: str, columns: List[str]) -> pd.DataFrame:
    frames = [
        _prefixed(group, lookup_prefix).assign(**{_KEY: key}) for key, group in indexed.index.items()
    ]
    if not frames:
        return pd.DataFrame(columns=[lookup_prefix + c for c in columns] + [_KEY])
    return pd.concat(frames, ignore_index=True, sort=False)


def lookup(context: NodeContext, params: LookupParams, data) -> object:
    """
    Joins a ``source`` table against an ``index`` (an IndexedTable, or a raw
    TableSelection that is indexed on the fly).

    inner/left produce one flat table whose columns are prefixed with each
    table's base name (``lookup_<base>_`` on the lookup side when both
    tables share a base name); nested keeps one row per source row with its matches;
    cross is the Cartesian product and ignores keys.
    """
    if not isinstance(data, tuple) or len(data) != 2:
        raise InvalidInputTypeError.expected("[source, index]", data)
    source, index = data
    if source is None or index is None:
        missing = "source" if source is None else "index"
        raise InvalidInputTypeError(f"Lookup is missing its '{missing}' input")
    source = expect(source, TableSelection, name="source TableSelection")
    index = expect(index, IndexedTable, TableSelection, name="index IndexedTable or TableSelection")

    if not source.tables:
        return empty_selection(source)

    if isinstance(index, TableSelection):
        columns = params.index_join_columns or params.index_columns or params.lookup_columns
        if not columns:
            raise ConfigurationError("No columns to index the lookup table on")
        index = build_index(index.tables, columns)
    if index.source_table is None:
        return empty_selection(source)

    source_table = source.tables[0]
    lookup_table = index.source_table
    src_rows = concat_rows(source.tables) if len(source.tables) > 1 else source_table.rows
    sp, lp = _column_prefixes(source_table, lookup_table)
    sname, lname = source_table.base_name, lookup_table.base_name

    if params.join_type == "cross":
        rows = _prefixed(src_rows, sp).merge(_prefixed(lookup_table.rows, lp), how="cross")
        table = _joined_table(f"{sname}_cross_{lname}", rows, source_table, lookup_table)
        context.log.info("Cross join", rows=len(rows))
        return TableSelection(tables=[table], source_files=list(source.source_files))

    if not params.lookup_columns:
        raise ConfigurationError("No lookup column selected")
    _require_columns(src_rows, params.lookup_columns, source_table.name)
    keys = _key_series(src_rows, params.lookup_columns)

    if params.join_type == "nested":
        nested_rows = []
        for i, record in enumerate(src_rows.to_dict(orient="records")):
            group = index.index.get(keys.iat[i])
            matches = group.to_dict(orient="records") if group is not None else []
            nested_rows.append(NestedRow(source=record, matches=matches))
        context.log.info("Nested join", rows=len(nested_rows))
        return NestedTableSelection(
            rows=nested_rows,
            source_table=source_table,
            lookup_table=lookup_table,
            source_columns=list(src_rows.columns),
            lookup_columns=list(lookup_table.rows.columns),
        )

    left = _prefixed(src_rows, sp).assign(**{_KEY: keys.values, _ORDER: range(len(src_rows))})
    right = _index_frame(index, lp, list(lookup_table.rows.columns))
    rows = left.merge(right, on=_KEY, how=params.join_type)
    rows = rows.sort_values(_ORDER, kind="stable").drop(columns=[_KEY, _ORDER]).fillna("")
    table = _joined_table(f"{sname}_joined_{lname}", rows, source_table, lookup_table)
    context.log.info("Joined tables", join_type=params.join_type, rows=len(rows))
    return TableSelection(tables=[table], source_files=list(source.source_files))


# -------------------------------------------------------------------------
# 3. Flatten nested
# -------------------------------------------------------------------------


class FlattenNestedParams(NodeParams):
    pass


def flatten_nested(context: NodeContext, params: FlattenNestedParams, data) -> TableSelection:
    """One flat row per match; source rows without matches keep blank lookup columns."""
    nested = expect(data, NestedTableSelection)
    if nested.source_table is None or nested.lookup_table is None:
        return TableSelection()

    sp, lp = _column_prefixes(nested.source_table, nested.lookup_table)
    columns = [sp + c for c in nested.source_columns] + [lp + c for c in nested.lookup_columns]
    records = []
    for row in nested.rows:
        base = {sp + k: v for k, v in row.source.items()}
        if not row.matches:
            records.append(base)
        for match in row.matches:
            records.append({**base, **{lp + k: v for k, v in match.items()}})

    rows = frame_from_rows(records, columns)
    name = f"{nested.source_table.base_name}_flattened_{nested.lookup_table.base_name}"
    table = _joined_table(name, rows, nested.source_table, nested.lookup_table)
    return TableSelection(tables=[table])


# -------------------------------------------------------------------------
# 4. Aggregate nested
# -------------------------------------------------------------------------


class AggregateNestedParams(NodeParams):
    aggregate_column: str = Field("", description="Lookup column aggregated per source row")
    aggregate_type: Literal["min", "max", "sum", "avg", "count"] = "max"
    filter_column: Optional[str] = Field(None, description="Optional match pre-filter column")
    filter_operator: Operator = "equals"
    filter_value: Optional[str] = None

    @field_validator("filter_value", mode="before")
    @classmethod
    def _as_text(cls, value):
        return None if value is None else str(value)


def aggregate_nested(context: NodeContext, params: AggregateNestedParams, data) -> NestedTableSelection:
    """
    Reduces each row's matches. min/max keep the single selected match;
    sum/avg/count add ``<aggregate_column>_<type>`` to the source row and
    clear the matches. Rows left without matches are dropped.
    """
    nested = expect(data, NestedTableSelection)
    col, agg = params.aggregate_column, params.aggregate_type
    if agg != "count" and not col:
        raise ConfigurationError(f"'{agg}' needs an aggregate column")

    output_column = f"{col}_{agg}"
    rows = []
    for row in nested.rows:
        matches = row.matches
        if params.filter_column:
            matches = [
                m
                for m in matches
                if compare(m.get(params.filter_column, ""), params.filter_operator, params.filter_value or "")
            ]
        if not matches:
            continue

        if agg == "count":
            rows.append(NestedRow(source={**row.source, output_column: str(len(matches))}))
            continue

        numeric = [(strict_number(m.get(col)), m) for m in matches]
        numeric = [(v, m) for v, m in numeric if v is not None]
        if not numeric:
            continue

        if agg in ("min", "max"):
            pick = min if agg == "min" else max
            best = pick(numeric, key=lambda pair: pair[0])
            rows.append(NestedRow(source=dict(row.source), matches=[best[1]]))
        else:
            total = sum(v for v, _ in numeric)
            value = total if agg == "sum" else total / len(numeric)
            rows.append(NestedRow(source={**row.source, output_column: format_number(value)}))

    source_columns = list(nested.source_columns)
    if agg in ("sum", "avg", "count") and output_column not in source_columns:
        source_columns.append(output_column)

    context.log.info("Aggregated nested rows", kept=len(rows), dropped=len(nested.rows) - len(rows))
    return NestedTableSelection(
        rows=rows,
        source_table=nested.source_table,
        lookup_table=nested.lookup_table,
        source_columns=source_columns,
        lookup_columns=list(nested.lookup_columns),
    )


# -------------------------------------------------------------------------
# 5. Extract table
# -------------------------------------------------------------------------


class ExtractTableParams(NodeParams):
    table_prefix: str = Field("", description="Column prefix of the table to recover, e.g. 'land_units_'")

    @field_validator("table_prefix", mode="before")
    @classmethod
    def _trailing_underscore(cls, value):
        value = (value or "").strip()
        return value if not value or value.endswith("_") else value + "_"


def extract_table(context: NodeContext, params: ExtractTableParams, data) -> TableSelection:
    selection = expect(data, TableSelection)
    if not params.table_prefix:
        raise ConfigurationError("No table prefix selected")
    if not selection.tables:
        return empty_selection(selection)

    prefix = params.table_prefix
    table = selection.tables[0]
    columns = [c for c in table.columns if c.startswith(prefix)]
    if not columns:
        raise ReferenceNotFoundError(f"No columns with prefix '{prefix}' in {table.name}")

    base = prefix[:-1]
    registered = context.schemas.latest(base) if base in context.schemas else None
    fields = []
    for column in columns:
        name = column[len(prefix):]
        original = registered.field(name) if registered else None
        if original is None:
            carried = table.schema.field(column)
            original = carried.model_copy(update={"name": name}) if carried else SchemaField(name=name)
        fields.append(original)

    rows = table.rows[columns].rename(columns=lambda c: c[len(prefix):])
    extracted = PackTable(
        name=DB_PREFIX + base,
        file_name=f"{DB_PREFIX}{base}\\{file_tail(table.file_name)}",
        schema=TableSchema(version=registered.version if registered else 0, fields=fields),
        rows=rows.reset_index(drop=True),
        source=table.source,
    )
    return TableSelection(tables=[extracted], source_files=list(selection.source_files))


# -------------------------------------------------------------------------
# 6. Group by
# -------------------------------------------------------------------------


class Condition(NodeParams):
    column: str
    operator: Operator = "equals"
    value: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)


class Aggregation(NodeParams):
    source_column: str = ""
    operation: Literal["max", "min", "sum", "avg", "count", "first", "last"] = "max"
    output_name: Optional[str] = None
    default_value: Optional[str] = None
    condition: Optional[Condition] = None

    @field_validator("default_value", mode="before")
    @classmethod
    def _as_text(cls, value):
        return None if value is None else str(value)

    @property
    def column_name(self) -> str:
        return self.output_name or f"{self.source_column}_{self.operation}"

    @property
    def numeric(self) -> bool:
        return self.operation in ("max", "min", "sum", "avg", "count")

    def fallback(self) -> str:
        if self.default_value is not None:
            return self.default_value
        return "0" if self.numeric else ""


class GroupByParams(NodeParams):
    group_by_columns: List[str] = Field(default_factory=list)
    aggregations: List[Aggregation] = Field(default_factory=list)

    @field_validator("group_by_columns", mode="before")
    @classmethod
    def _split(cls, value):
        return split_lines(value)


def _aggregate(group: pd.DataFrame, agg: Aggregation) -> str:
    if agg.condition is not None:
        cond = agg.condition
        if cond.column not in group.columns:
            raise ReferenceNotFoundError(f"Condition column '{cond.column}' not found")
        mask = group[cond.column].map(lambda cell: compare(cell, cond.operator, cond.value))
        group = group[mask.astype(bool)]

    if group.empty:
        return agg.fallback()
    if agg.operation == "count":
        return str(len(group))

    values = group[agg.source_column]
    if agg.operation == "first":
        return str(values.iat[0])
    if agg.operation == "last":
        return str(values.iat[-1])

    numbers = [n for n in (strict_number(v) for v in values) if n is not None]
    if not numbers:
        return agg.fallback()
    if agg.operation == "max":
        return format_number(max(numbers))
    if agg.operation == "min":
        return format_number(min(numbers))
    total = sum(numbers)
    return format_number(total if agg.operation == "sum" else total / len(numbers))


def _aggregation_field(agg: Aggregation, schema: TableSchema) -> SchemaField:
    source = schema.field(agg.source_column)
    if agg.operation == "count":
        field_type = FieldType.I32
    elif agg.operation == "avg":
        field_type = FieldType.F32
    elif source is not None and (agg.operation in ("first", "last") or source.field_type.is_numeric):
        field_type = source.field_type
    else:
        field_type = FieldType.I32 if agg.numeric else FieldType.STRING_U8
    return SchemaField(name=agg.column_name, field_type=field_type)


def group_by(context: NodeContext, params: GroupByParams, data) -> TableSelection:
    """
    Groups each table by ``group_by_columns`` and computes the configured
    aggregations. An aggregation with a condition only sees the rows that
    satisfy it, and falls back to its default when none do.
    """
    selection = expect(data, TableSelection)
    if not params.group_by_columns:
        raise ConfigurationError("Select at least one group-by column")
    if not params.aggregations:
        raise ConfigurationError("Add at least one aggregation")

    tables = []
    for table in selection.tables:
        rows = table.rows
        _require_columns(rows, params.group_by_columns, table.name)
        _require_columns(
            rows,
            [a.source_column for a in params.aggregations if a.operation != "count"],
            table.name,
        )

        records = []
        if len(rows):
            for key, group in rows.groupby(params.group_by_columns, sort=False):
                key = key if isinstance(key, tuple) else (key,)
                record = dict(zip(params.group_by_columns, (str(k) for k in key)))
                for agg in params.aggregations:
                    record[agg.column_name] = _aggregate(group, agg)
                records.append(record)

        group_fields = [
            (table.schema.field(c) or SchemaField(name=c)).model_copy(update={"is_key": True})
            for c in params.group_by_columns
        ]
        agg_fields = [_aggregation_field(a, table.schema) for a in params.aggregations]
        schema = TableSchema(version=table.schema.version, fields=group_fields + agg_fields)
        name = f"{table.base_name}_grouped"
        tables.append(
            PackTable(
                name=DB_PREFIX + name,
                file_name=f"{DB_PREFIX}{name}\\{file_tail(table.file_name)}",
                schema=schema,
                rows=frame_from_rows(records, schema.field_names),
                source=table.source,
            )
        )

    context.log.info("Grouped rows", tables=len(tables), groups=sum(len(t.rows) for t in tables))
    return TableSelection(tables=tables, source_files=list(selection.source_files))
