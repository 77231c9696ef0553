"""Row filters: predicate filter, multi-way split and deduplication."""

import re
from typing import Dict, List, Literal

import pandas as pd
from pydantic import Field, field_validator, model_validator

from packflow.exceptions import ConfigurationError
from packflow.executors.common import NodeParams, empty_selection, expect, split_lines
from packflow.node import ExecutionResult, NodeContext
from packflow.payloads import PackTable, TableSelection

# -------------------------------------------------------------------------
# 1. Filter
# -------------------------------------------------------------------------


class FilterRow(NodeParams):
    column: str = ""
    value: str = ""
    negate: bool = Field(False, alias="not")
    operator: Literal["AND", "OR"] = "AND"

    @field_validator("operator", mode="before")
    @classmethod
    def _upper(cls, value):
        return str(value or "AND").upper()

    @field_validator("value", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)


class FilterParams(NodeParams):
    filters: List[FilterRow] = Field(
        default_factory=list, description="Predicates combined left to right"
    )

    @model_validator(mode="before")
    @classmethod
    def _single_predicate(cls, data):
        # column/value/negate at the top level is a one-row filter list
        if isinstance(data, dict) and "filters" not in data and data.get("column"):
            row = {k: data[k] for k in ("column", "value", "negate", "not") if k in data}
            return {**data, "filters": [row]}
        return data


def _predicate_mask(rows: pd.DataFrame, predicate: FilterRow) -> pd.Series:
    if predicate.column not in rows.columns:
        mask = pd.Series(True, index=rows.index)
    else:
        mask = rows[predicate.column].astype(str).str.lower() == predicate.value.lower()
    return ~mask if predicate.negate else mask


def filter_mask(rows: pd.DataFrame, predicates: List[FilterRow]) -> pd.Series:
    """Combine predicates left to right; predicate i joins with i-1's operator."""
    mask = _predicate_mask(rows, predicates[0])
    for previous, predicate in zip(predicates, predicates[1:]):
        current = _predicate_mask(rows, predicate)
        mask = (mask & current) if previous.operator == "AND" else (mask | current)
    return mask


def filter_rows(context: NodeContext, params: FilterParams, data) -> ExecutionResult:
    """
    Splits every table into matching rows (primary output) and the rest
    (the ``else`` output). Matching is case-insensitive string equality.
    """
    selection = expect(data, TableSelection)
    predicates = [p for p in params.filters if p.column]
    if not predicates:
        context.log.debug("No predicates configured, passing input through")
        return context.result(selection, else_data=empty_selection(selection))

    matched: List[PackTable] = []
    rest: List[PackTable] = []
    for table in selection.tables:
        mask = filter_mask(table.rows, predicates)
        matched.append(table.with_rows(table.rows[mask]))
        rest.append(table.with_rows(table.rows[~mask]))

    match_selection = TableSelection(tables=matched, source_files=list(selection.source_files))
    else_selection = TableSelection(tables=rest, source_files=list(selection.source_files))
    context.log.info(
        "Filtered rows", matched=match_selection.row_count, remaining=else_selection.row_count
    )
    return context.result(match_selection, else_data=else_selection)


# -------------------------------------------------------------------------
# 2. Multi filter
# -------------------------------------------------------------------------


class SplitValue(NodeParams):
    value: str
    enabled: bool = True

    @field_validator("value", mode="before")
    @classmethod
    def _as_text(cls, value):
        return str(value)


class MultiFilterParams(NodeParams):
    column: str = Field("", alias="selectedColumn", description="Column whose value picks the output")
    split_values: List[SplitValue] = Field(default_factory=list)


def split_handle(value: str) -> str:
    return "output-" + re.sub(r"[^A-Za-z0-9_-]", "_", value)


def multi_filter(context: NodeContext, params: MultiFilterParams, data) -> ExecutionResult:
    """
    Routes each row to the first enabled split whose value equals the row's
    cell. Each split is a named output ``output-<value>``.
    """
    selection = expect(data, TableSelection)
    splits = [s for s in params.split_values if s.enabled]
    if not params.column or not splits:
        raise ConfigurationError("A column and at least one enabled split value are required")

    outputs: Dict[str, List[PackTable]] = {split_handle(s.value): [] for s in splits}
    primary: List[PackTable] = []
    for table in selection.tables:
        if params.column not in table.columns:
            continue
        cells = table.rows[params.column].astype(str).str.lower()
        assigned = pd.Series(False, index=table.rows.index)
        for split in splits:
            mask = (cells == split.value.lower()) & ~assigned
            assigned |= mask
            outputs[split_handle(split.value)].append(table.with_rows(table.rows[mask]))
        primary.append(table.with_rows(table.rows[assigned]))

    multi = {
        handle: TableSelection(tables=tables, source_files=list(selection.source_files))
        for handle, tables in outputs.items()
    }
    return context.result(
        TableSelection(tables=primary, source_files=list(selection.source_files)),
        multi_outputs=multi,
    )


# -------------------------------------------------------------------------
# 3. Deduplicate
# -------------------------------------------------------------------------


class DeduplicateParams(NodeParams):
    columns: List[str] = Field(
        default_factory=list, alias="dedupeByColumns", description="Columns forming the key"
    )

    @field_validator("columns", mode="before")
    @classmethod
    def _split(cls, value):
        return split_lines(value)


def deduplicate(context: NodeContext, params: DeduplicateParams, data) -> TableSelection:
    """Keeps the first row per key across all tables, in input order."""
    selection = expect(data, TableSelection)
    if not params.columns:
        raise ConfigurationError("No deduplication columns selected")

    seen = set()
    tables = []
    dropped = 0
    for table in selection.tables:
        rows = table.rows
        keys = [
            tuple(
                str(rows[c].iat[i]) if c in rows.columns else "" for c in params.columns
            )
            for i in range(len(rows))
        ]
        keep = []
        for key in keys:
            keep.append(key not in seen)
            seen.add(key)
        dropped += keep.count(False)
        tables.append(table.with_rows(rows[pd.Series(keep, index=rows.index, dtype=bool)]))

    context.log.info("Deduplicated rows", dropped=dropped)
    return TableSelection(tables=tables, source_files=list(selection.source_files))
