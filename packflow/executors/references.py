"""Schema-declared reference traversal, forward and backward."""

from typing import List, Optional, Set

from pydantic import Field, field_validator

from packflow.archive import read_tables, strip_db_prefix
from packflow.exceptions import ArchiveIOError
from packflow.executors.common import NodeParams, empty_selection, expect
from packflow.node import NodeContext
from packflow.payloads import PackTable, TableSelection


def _load_from_sources(context: NodeContext, selection: TableSelection, table_name: str) -> List[PackTable]:
    tables = []
    for pack in selection.source_files:
        if not pack.loaded:
            continue
        try:
            tables.extend(read_tables(context.archive, context.schemas, pack, [table_name]))
        except ArchiveIOError as e:
            context.log.warning("Skipping unreadable pack", pack=pack.name, error=str(e))
    return tables


def _keep_rows_with_values(table: PackTable, columns: List[str], values: Set[str]) -> PackTable:
    rows = table.rows
    mask = None
    for column in columns:
        if column not in rows.columns:
            continue
        hit = rows[column].astype(str).isin(values)
        mask = hit if mask is None else (mask | hit)
    if mask is None:
        return table.with_rows(rows.iloc[0:0])
    return table.with_rows(rows[mask])


# -------------------------------------------------------------------------
# 1. Reference lookup (forward)
# -------------------------------------------------------------------------


class ReferenceLookupParams(NodeParams):
    reference_table: str = Field(
        "", alias="selectedReferenceTable", description="Table the input columns point at"
    )

    @field_validator("reference_table", mode="before")
    @classmethod
    def _strip(cls, value):
        return strip_db_prefix(value or "")


def reference_lookup(context: NodeContext, params: ReferenceLookupParams, data) -> TableSelection:
    """
    Follows the input tables' reference columns into ``reference_table`` and
    returns the referenced rows, read from the input's source packs.
    """
    selection = expect(data, TableSelection)
    target = params.reference_table
    if not target:
        context.log.warning("No reference table configured")
        return empty_selection(selection)

    values: Set[str] = set()
    declared: Set[str] = set()
    for table in selection.tables:
        for ref_field in table.schema.reference_fields(target):
            if ref_field.name in table.columns:
                values.update(v for v in table.rows[ref_field.name].astype(str) if v)
                if ref_field.reference_column:
                    declared.add(ref_field.reference_column)

    if not values:
        context.log.info("No referencing values found", reference_table=target)
        return empty_selection(selection)

    results = []
    for table in _load_from_sources(context, selection, target):
        # match on the referenced columns, else the table key
        columns = sorted(c for c in declared if c in table.columns)
        if not columns:
            key = table.schema.key_field
            if key is None:
                continue
            columns = [key.name]
        results.append(_keep_rows_with_values(table, columns, values))

    out = TableSelection(tables=results, source_files=list(selection.source_files))
    context.log.info("Resolved references", reference_table=target, rows=out.row_count)
    return out


# -------------------------------------------------------------------------
# 2. Reverse reference lookup
# -------------------------------------------------------------------------


class ReverseReferenceLookupParams(NodeParams):
    reverse_table: str = Field(
        "", alias="selectedReverseTable", description="Table whose columns reference the input"
    )

    @field_validator("reverse_table", mode="before")
    @classmethod
    def _strip(cls, value):
        return strip_db_prefix(value or "")


def _auto_reverse_table(context: NodeContext, input_table: str) -> Optional[str]:
    candidates = context.schemas.referencing_tables(input_table)
    if len(candidates) == 1:
        return candidates[0]
    context.log.info(
        "Reverse table not configured and not unique", input_table=input_table, candidates=candidates
    )
    return None


def reverse_reference_lookup(
    context: NodeContext, params: ReverseReferenceLookupParams, data
) -> TableSelection:
    """
    Returns rows of ``reverse_table`` that reference any key of the input
    tables. With no table configured, the single registry table referencing
    the input is used.
    """
    selection = expect(data, TableSelection)
    if not selection.tables:
        return empty_selection(selection)

    input_table = selection.tables[0].base_name
    reverse = params.reverse_table or _auto_reverse_table(context, input_table)
    if not reverse:
        return empty_selection(selection)

    keys: Set[str] = set()
    for table in selection.tables:
        key = table.schema.key_field
        if key is not None and key.name in table.columns:
            keys.update(v for v in table.rows[key.name].astype(str) if v)

    results = []
    for table in _load_from_sources(context, selection, reverse):
        columns = [f.name for f in table.schema.reference_fields(input_table)]
        if columns:
            results.append(_keep_rows_with_values(table, columns, keys))

    out = TableSelection(tables=results, source_files=list(selection.source_files))
    context.log.info("Resolved reverse references", reverse_table=reverse, rows=out.row_count)
    return out
