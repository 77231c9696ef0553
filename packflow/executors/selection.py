"""Table and column selection nodes."""

from typing import Dict, List

from pydantic import Field, field_validator, model_validator

from packflow.archive import read_tables, strip_db_prefix
from packflow.exceptions import ArchiveIOError, ConfigurationError, ReferenceNotFoundError
from packflow.executors.common import NodeParams, expect, split_lines
from packflow.node import NodeContext
from packflow.payloads import (
    ColumnSelection,
    ColumnSlice,
    GroupedText,
    PackFiles,
    PackTable,
    TableSelection,
)


def _single_to_list(data, single_keys, list_key):
    # {"table": "x"} and {"selectedTable": "x"} are shorthand for {"tables": ["x"]}
    if isinstance(data, dict) and list_key not in data:
        for key in single_keys:
            if data.get(key):
                return {**data, list_key: [data[key]]}
    return data


# -------------------------------------------------------------------------
# 1. Table selection
# -------------------------------------------------------------------------


class TableSelectionParams(NodeParams):
    tables: List[str] = Field(default_factory=list, description="Table names, e.g. land_units_tables")

    @model_validator(mode="before")
    @classmethod
    def _shorthand(cls, data):
        return _single_to_list(data, ("table", "selectedTable"), "tables")

    @field_validator("tables", mode="before")
    @classmethod
    def _split(cls, value):
        return [strip_db_prefix(n) for n in split_lines(value)]


def select_tables(context: NodeContext, names: List[str], packs: PackFiles) -> TableSelection:
    """Load ``names`` from every loaded pack; unknown names are reported, not fatal."""
    tables: List[PackTable] = []
    for pack in packs.loaded:
        try:
            tables.extend(read_tables(context.archive, context.schemas, pack, names))
        except (ArchiveIOError, ReferenceNotFoundError) as e:
            context.log.warning("Skipping unreadable pack", pack=pack.name, error=str(e))

    found = {t.base_name for t in tables}
    unresolved = [n for n in names if n not in found]
    if unresolved:
        context.log.warning("Tables not found in any pack", tables=unresolved)

    context.log.info("Selected tables", tables=len(tables), rows=sum(len(t.rows) for t in tables))
    return TableSelection(tables=tables, source_files=list(packs.loaded), unresolved=unresolved)


def table_selection(context: NodeContext, params: TableSelectionParams, data) -> TableSelection:
    packs = expect(data, PackFiles)
    if not params.tables:
        raise ConfigurationError("No tables selected")
    return select_tables(context, params.tables, packs)


class TableDropdownParams(NodeParams):
    table: str = Field("", alias="selectedTable", description="Single table to select")

    @field_validator("table", mode="before")
    @classmethod
    def _strip(cls, value):
        return strip_db_prefix(value or "")


def table_selection_dropdown(context: NodeContext, params: TableDropdownParams, data) -> TableSelection:
    packs = expect(data, PackFiles)
    if not params.table:
        raise ConfigurationError("No table selected")
    return select_tables(context, [params.table], packs)


# -------------------------------------------------------------------------
# 2. Column selection
# -------------------------------------------------------------------------


class ColumnSelectionParams(NodeParams):
    columns: List[str] = Field(default_factory=list, description="Columns to carry forward")

    @model_validator(mode="before")
    @classmethod
    def _shorthand(cls, data):
        return _single_to_list(data, ("column", "selectedColumn"), "columns")

    @field_validator("columns", mode="before")
    @classmethod
    def _split(cls, value):
        return split_lines(value)


def column_selection(context: NodeContext, params: ColumnSelectionParams, data) -> ColumnSelection:
    selection = expect(data, TableSelection)
    if not params.columns:
        raise ConfigurationError("No columns selected")

    slices = []
    for table in selection.tables:
        present = [c for c in params.columns if c in table.columns]
        missing = [c for c in params.columns if c not in table.columns]
        if missing:
            context.log.warning("Columns missing from table", table=table.name, columns=missing)
        slices.append(ColumnSlice(table=table, selected_columns=present, missing_columns=missing))
    return ColumnSelection(columns=slices)


# -------------------------------------------------------------------------
# 3. Group by two columns into text
# -------------------------------------------------------------------------


class GroupByColumnsParams(NodeParams):
    column1: str = Field("", description="Key column")
    column2: str = Field("", description="Value column")
    only_for_multiple: bool = Field(False, description="Keep keys with more than one value only")


def group_by_columns(context: NodeContext, params: GroupByColumnsParams, data) -> GroupedText:
    selection = expect(data, TableSelection)
    if not params.column1 or not params.column2:
        raise ConfigurationError("Both column1 and column2 must be selected")

    groups: Dict[str, List[str]] = {}
    for table in selection.tables:
        if params.column1 not in table.columns or params.column2 not in table.columns:
            continue
        for key, value in zip(table.rows[params.column1], table.rows[params.column2]):
            groups.setdefault(str(key), []).append(str(value))

    if params.only_for_multiple:
        groups = {k: v for k, v in groups.items() if len(v) > 1}

    return GroupedText(keys=list(groups), values=list(groups.values()))
