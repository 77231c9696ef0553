"""Row generation and derived columns built from per-row transformation steps."""

import re
from typing import Dict, List, Literal, Optional

import pandas as pd
from pydantic import Field, field_validator, model_validator

from packflow.archive import strip_db_prefix
from packflow.counters import CounterSequence
from packflow.exceptions import ConfigurationError
from packflow.executors.common import (
    NodeParams,
    concat_rows,
    empty_selection,
    expect,
    format_number,
    parse_number,
)
from packflow.node import ExecutionResult, NodeContext
from packflow.payloads import DB_PREFIX, PackTable, TableSelection, frame_from_rows
from packflow.schema import SchemaField, TableSchema

MAX_OUTPUT_TABLES = 4
DEFAULT_COUNTER_START = 10000

TransformationType = Literal[
    "none",
    "prefix",
    "suffix",
    "add",
    "subtract",
    "multiply",
    "divide",
    "counter",
    "filterequal",
    "filternotequal",
    "rename_whole",
    "rename_substring",
    "replace_substring_whole",
    "regex_replace",
]

FILTER_TYPES = ("filterequal", "filternotequal")
NUMERIC_TYPES = ("add", "subtract", "multiply", "divide")
REWRITE_TYPES = ("rename_whole", "rename_substring", "replace_substring_whole", "regex_replace")


class DropRow(Exception):
    """Raised by a filter step to discard the current row."""


class Transformation(NodeParams):
    """One step applied to every row.

    ``find``/``replace`` drive the rewrite types; the editor's
    ``matchValue``, ``findSubstring``, ``replaceValue``, ``regexPattern``
    and ``regexReplacement`` keys map onto them.
    """

    source_column: str = ""
    transformation_type: TransformationType = "none"
    prefix: str = ""
    suffix: str = ""
    numeric_value: Optional[float] = None
    start_number: int = DEFAULT_COUNTER_START
    filter_value: str = ""
    find: str = ""
    replace: str = ""
    output_column_name: str = ""
    target_table_handle_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _editor_keys(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("matchValue", "findSubstring", "regexPattern"):
            if data.get(key) and not data.get("find"):
                data["find"] = data[key]
        for key in ("replaceValue", "regexReplacement"):
            if key in data and "replace" not in data:
                data["replace"] = data[key]
        return data

    @field_validator("filter_value", "prefix", "suffix", "find", "replace", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)

    @field_validator("start_number", mode="before")
    @classmethod
    def _start(cls, value):
        return DEFAULT_COUNTER_START if value in (None, "") else value

    @property
    def output_name(self) -> str:
        return self.output_column_name or self.source_column

    @property
    def is_filter(self) -> bool:
        return self.transformation_type in FILTER_TYPES


def _numeric(step: Transformation, value: str) -> str:
    number = parse_number(value)
    if number is None:
        return "0"
    kind = step.transformation_type
    if kind == "add":
        result = number + (step.numeric_value or 0)
    elif kind == "subtract":
        result = number - (step.numeric_value or 0)
    elif kind == "multiply":
        result = number * (1 if step.numeric_value is None else step.numeric_value)
    else:
        divisor = 1 if step.numeric_value is None else step.numeric_value
        result = number / divisor if divisor else 0
    return format_number(float(result))


def _rewrite(step: Transformation, value: str) -> str:
    kind = step.transformation_type
    if kind == "rename_whole":
        return step.replace if value == step.find else value
    if not step.find:
        return value
    if kind == "rename_substring":
        return value.replace(step.find, step.replace)
    if kind == "replace_substring_whole":
        return step.replace if step.find in value else value
    try:
        return re.sub(step.find, step.replace, value)
    except re.error as e:
        raise ConfigurationError(f"Invalid regex '{step.find}': {e}") from e


def apply_step(step: Transformation, value: str, counter: Optional[CounterSequence] = None) -> str:
    """Apply one step to ``value``.

    Raises:
        DropRow: When a filter step rejects the row
    """
    kind = step.transformation_type
    if kind == "prefix":
        return step.prefix + value
    if kind == "suffix":
        return value + step.suffix
    if kind in NUMERIC_TYPES:
        return _numeric(step, value)
    if kind == "counter":
        return str(counter.next())
    if kind == "filterequal":
        if value == step.filter_value:
            raise DropRow()
        return value
    if kind == "filternotequal":
        if value != step.filter_value:
            raise DropRow()
        return value
    if kind in REWRITE_TYPES:
        return _rewrite(step, value)
    return value


def _counter_sequences(
    context: NodeContext, steps: List[Transformation], rows: pd.DataFrame
) -> Dict[int, CounterSequence]:
    sequences = {}
    for i, step in enumerate(steps):
        if step.transformation_type != "counter":
            continue
        existing = rows[step.source_column] if step.source_column in rows.columns else []
        sequences[i] = context.counters.sequence(step.source_column, step.start_number, existing)
    return sequences


def run_steps(
    steps: List[Transformation],
    row: Dict[str, str],
    sequences: Dict[int, CounterSequence],
) -> List[tuple]:
    """Run ``steps`` over one row, chaining on earlier outputs.

    Returns:
        ``(step, value)`` pairs for the non-filter steps

    Raises:
        DropRow: When a filter step rejects the row
    """
    produced: Dict[str, str] = {}
    values = []
    for i, step in enumerate(steps):
        if step.source_column in produced:
            value = produced[step.source_column]
        elif step.is_filter and step.source_column not in row:
            continue
        else:
            value = str(row.get(step.source_column, ""))
        value = apply_step(step, value, sequences.get(i))
        if step.is_filter:
            continue
        if step.output_name:
            produced[step.output_name] = value
        values.append((step, value))
    return values


# -------------------------------------------------------------------------
# 1. Generate rows
# -------------------------------------------------------------------------


class OutputTable(NodeParams):
    handle_id: str
    name: str = ""
    existing_table_name: str
    table_version: Optional[int] = None
    static_values: Dict[str, str] = Field(default_factory=dict)

    @field_validator("existing_table_name", mode="before")
    @classmethod
    def _strip(cls, value):
        return strip_db_prefix(value or "")

    @field_validator("static_values", mode="before")
    @classmethod
    def _as_text(cls, value):
        return {str(k): "" if v is None else str(v) for k, v in (value or {}).items()}


class GenerateRowsParams(NodeParams):
    transformations: List[Transformation] = Field(default_factory=list)
    output_tables: List[OutputTable] = Field(
        default_factory=list, description=f"Up to {MAX_OUTPUT_TABLES} generated tables"
    )

    @field_validator("output_tables")
    @classmethod
    def _at_most_four(cls, value):
        if len(value) > MAX_OUTPUT_TABLES:
            raise ValueError(f"at most {MAX_OUTPUT_TABLES} output tables are supported")
        return value


def _output_cell(field: SchemaField, generated: Dict[str, str], target: OutputTable) -> str:
    if field.name in generated:
        return generated[field.name]
    if field.name in target.static_values:
        return target.static_values[field.name]
    if field.default_value is not None:
        return field.default_value
    return field.field_type.default_cell


def generate_rows(context: NodeContext, params: GenerateRowsParams, data) -> ExecutionResult:
    """
    Builds rows for each configured output table from the input rows.

    Each output table takes its layout from the schema registry. A column is
    filled from the transformation addressed to that table (or to every
    table), then its static value, then the field default. Filter steps are
    checked against the raw row before any counter is drawn.
    """
    selection = expect(data, TableSelection)
    if not params.output_tables:
        raise ConfigurationError("No output tables configured")

    targets = [(t, context.schemas.get(t.existing_table_name, t.table_version)) for t in params.output_tables]
    source_files = list(selection.source_files)
    rows = concat_rows(selection.tables)

    if rows.empty:
        outputs = {t.handle_id: empty_selection(selection) for t, _ in targets}
        return context.result(empty_selection(selection), multi_outputs=outputs)

    filters = [s for s in params.transformations if s.is_filter]
    steps = [s for s in params.transformations if not s.is_filter]
    sequences = _counter_sequences(context, steps, rows)

    generated_rows: Dict[str, List[Dict[str, str]]] = {t.handle_id: [] for t, _ in targets}
    dropped = 0
    for record in rows.to_dict(orient="records"):
        try:
            for f in filters:
                # a filter on a column the row lacks does not apply
                if f.source_column in record:
                    apply_step(f, str(record[f.source_column]))
        except DropRow:
            dropped += 1
            continue

        values = run_steps(steps, record, sequences)
        for target, schema in targets:
            generated = {
                step.output_name: value
                for step, value in values
                if step.target_table_handle_id in (None, "", target.handle_id)
            }
            generated_rows[target.handle_id].append(
                {f.name: _output_cell(f, generated, target) for f in schema.fields}
            )

    source = selection.tables[0].source if selection.tables else None
    outputs = {}
    for target, schema in targets:
        base = target.existing_table_name
        file_part = target.name or target.handle_id
        table = PackTable(
            name=DB_PREFIX + base,
            file_name=f"{DB_PREFIX}{base}\\{file_part}",
            schema=schema,
            rows=frame_from_rows(generated_rows[target.handle_id], schema.field_names),
            source=source,
        )
        outputs[target.handle_id] = TableSelection(tables=[table], source_files=source_files)

    context.log.info(
        "Generated rows",
        tables=len(outputs),
        rows=len(rows) - dropped,
        dropped=dropped,
    )
    return context.result(TableSelection.union(list(outputs.values())), multi_outputs=outputs)


# -------------------------------------------------------------------------
# 2. Add new column
# -------------------------------------------------------------------------


class AddNewColumnParams(NodeParams):
    transformations: List[Transformation] = Field(default_factory=list)


def add_new_column(context: NodeContext, params: AddNewColumnParams, data) -> TableSelection:
    """Appends one StringU8 column per non-filter step to the combined input rows."""
    selection = expect(data, TableSelection)
    if not params.transformations:
        raise ConfigurationError("No transformations configured")
    if not selection.tables:
        return empty_selection(selection)

    first = selection.tables[0]
    rows = concat_rows(selection.tables)
    sequences = _counter_sequences(context, params.transformations, rows)

    new_columns: List[str] = []
    for step in params.transformations:
        if not step.is_filter and step.output_name and step.output_name not in new_columns:
            new_columns.append(step.output_name)

    records = []
    for record in rows.to_dict(orient="records"):
        try:
            values = run_steps(params.transformations, record, sequences)
        except DropRow:
            continue
        out = dict(record)
        for step, value in values:
            if step.output_name:
                out[step.output_name] = value
        records.append(out)

    columns = list(rows.columns) + [c for c in new_columns if c not in rows.columns]
    fields = [f for f in first.schema.fields if f.name in rows.columns]
    known = {f.name for f in fields}
    fields += [SchemaField(name=c) for c in columns if c not in known]
    table = first.with_rows(
        frame_from_rows(records, columns),
        schema=TableSchema(version=first.schema.version, fields=fields),
    )
    context.log.info("Added columns", columns=new_columns, rows=len(records))
    return TableSelection(tables=[table], source_files=list(selection.source_files))
