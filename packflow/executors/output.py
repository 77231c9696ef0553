"""Terminal and export nodes: save to an archive, dump to TSV, counter columns."""

import os
import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from packflow.archive import ArchiveEntry, read_tables, strip_db_prefix, table_to_entry
from packflow.exceptions import ArchiveIOError, InvalidInputTypeError, ReferenceNotFoundError
from packflow.executors.common import NodeParams, concat_rows, empty_selection, expect
from packflow.node import NodeContext
from packflow.payloads import (
    DB_PREFIX,
    ChangedColumnSelection,
    PackFiles,
    PackTable,
    SaveResult,
    TableSelection,
    Text,
    file_tail,
    frame_from_rows,
)
from packflow.schema import SchemaField, TableSchema
from packflow.utils.content_hash import compute_dataframe_hash, short_hash

EXECUTION_ID_FORMAT = "%Y-%m-%d_%H-%M-%S"


def pack_name_for(execution_id: str) -> str:
    """``2025-12-14_23-19-58`` -> ``dbflow_141225_231958``."""
    try:
        stamp = datetime.strptime(execution_id, EXECUTION_ID_FORMAT)
    except ValueError:
        return "dbflow_" + re.sub(r"[-:]", "", execution_id)
    return stamp.strftime("dbflow_%d%m%y_%H%M%S")


# -------------------------------------------------------------------------
# 1. Save changes
# -------------------------------------------------------------------------


class SaveChangesParams(NodeParams):
    pack_name: str = Field("", description="Archive name without extension; derived from the run if empty")
    packed_file_name: str = Field("", description="Entry name used when saving text")

    @field_validator("pack_name", mode="before")
    @classmethod
    def _no_extension(cls, value):
        value = (value or "").strip()
        return value[:-5] if value.lower().endswith(".pack") else value


def _unique(name: str, taken: set) -> str:
    candidate, n = name, 2
    while candidate in taken:
        candidate = f"{name}_{n}"
        n += 1
    taken.add(candidate)
    return candidate


def _table_entries(tables: List[PackTable], base: str, suffix: str, override: bool) -> List[ArchiveEntry]:
    entries = []
    taken: set = set()
    for table in tables:
        stem = file_tail(table.file_name) if override else base
        marker = "!" if override else ""
        name = _unique(f"{DB_PREFIX}{table.base_name}\\{marker}{stem}_{suffix}", taken)
        entries.append(table_to_entry(table, name))
    return entries


def _entry_summary(entry: ArchiveEntry, table: Optional[PackTable] = None) -> Dict:
    summary = {"name": entry.name}
    if table is not None:
        summary["rows"] = len(table.rows)
        summary["contentHash"] = compute_dataframe_hash(table.rows)
    return summary


def save_changes(context: NodeContext, params: SaveChangesParams, data) -> SaveResult:
    """
    Writes the input into ``<output_dir>/<pack name>.pack``. All save nodes
    of one run share the archive derived from the execution id, and later
    writes replace entries with the same name.

    Text becomes a single text entry; a change set becomes override
    entries (``!`` prefixed so they sort before the base file); a table
    selection becomes one new entry per table.
    """
    if data is None:
        raise InvalidInputTypeError(
            "Invalid input: Expected ChangedColumnSelection, TableSelection, or Text data"
        )
    data = expect(
        data,
        Text,
        ChangedColumnSelection,
        TableSelection,
        name="ChangedColumnSelection, TableSelection, or Text",
    )

    name = params.pack_name or pack_name_for(context.execution_id)
    path = os.path.join(context.output_dir, f"{name}.pack")
    suffix = short_hash(context.execution_id, context.node_id)

    if isinstance(data, Text):
        entry_name = params.packed_file_name or f"text\\output_{context.execution_id}.txt"
        entries = [ArchiveEntry(name=entry_name.replace("/", "\\"), data=data.text)]
        summaries = [_entry_summary(entries[0])]
        fmt = "text"
    else:
        if isinstance(data, ChangedColumnSelection):
            tables = [c.table for c in data.adjusted]
            entries = _table_entries(tables, name, suffix, override=True)
        else:
            tables = list(data.tables)
            entries = _table_entries(tables, name, suffix, override=False)
        summaries = [_entry_summary(e, t) for e, t in zip(entries, tables)]
        fmt = "pack"

    if not entries:
        context.log.warning("Nothing to save", path=path)
        return SaveResult(saved_to=path, format=fmt, message="No tables to save")

    context.archive.merge_entries(path, entries)
    message = f"Successfully saved {len(entries)} entr{'y' if len(entries) == 1 else 'ies'} to {path}"
    context.log.info("Saved archive", path=path, entries=len(entries))
    return SaveResult(saved_to=path, format=fmt, entries=summaries, message=message)


# -------------------------------------------------------------------------
# 2. Dump to TSV
# -------------------------------------------------------------------------


class DumpToTsvParams(NodeParams):
    file_name: str = Field("", description="Output file under the output directory")

    @field_validator("file_name", mode="before")
    @classmethod
    def _strip(cls, value):
        return (value or "").strip()


def dump_to_tsv(context: NodeContext, params: DumpToTsvParams, data) -> TableSelection:
    selection = expect(data, TableSelection)
    rows = concat_rows(selection.tables)
    if rows.empty and not len(rows.columns):
        context.log.info("No rows to dump")
        return selection

    file_name = params.file_name or f"{context.node_id}.tsv"
    if not file_name.lower().endswith(".tsv"):
        file_name += ".tsv"
    path = os.path.join(context.output_dir, file_name)

    cleaned = rows.astype(str).replace({r"[\t\r\n]": " "}, regex=True)
    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        cleaned.to_csv(path, sep="\t", index=False, lineterminator="\n")
    except OSError as e:
        raise ArchiveIOError(f"Cannot write TSV file: {e}", path=path) from e

    context.log.info("Dumped tables", path=path, rows=len(cleaned))
    return selection


# -------------------------------------------------------------------------
# 3. Counter column
# -------------------------------------------------------------------------


class GetCounterColumnParams(NodeParams):
    table: str = Field("", alias="selectedTable")
    column: str = Field("", alias="selectedColumn")
    new_column_name: str = ""

    @field_validator("table", mode="before")
    @classmethod
    def _strip(cls, value):
        return strip_db_prefix(value or "")


def get_counter_column(context: NodeContext, params: GetCounterColumnParams, data) -> TableSelection:
    """
    Collects one column from ``table`` in every loaded pack into the
    single-column table ``_counter_<table>``, typically feeding the
    existing-values side of a counter.
    """
    packs = expect(data, PackFiles)
    source = TableSelection(source_files=list(packs.files))
    if not params.table or not params.column:
        context.log.warning("Table or column not configured")
        return source

    column_name = params.new_column_name or f"counter_{params.column}"
    values: List[str] = []
    field: Optional[SchemaField] = None
    for pack in packs.loaded:
        try:
            tables = read_tables(context.archive, context.schemas, pack, [params.table])
        except (ArchiveIOError, ReferenceNotFoundError) as e:
            context.log.warning("Skipping unreadable pack", pack=pack.name, error=str(e))
            continue
        for table in tables:
            if params.column not in table.columns:
                continue
            field = field or table.schema.field(params.column)
            values.extend(table.rows[params.column].astype(str))

    if not values:
        return empty_selection(source)

    out_field = (field or SchemaField(name=column_name)).model_copy(
        update={"name": column_name, "is_key": True, "is_reference": []}
    )
    name = f"_counter_{params.table}"
    table = PackTable(
        name=DB_PREFIX + name,
        file_name=f"{DB_PREFIX}{name}\\{name}",
        schema=TableSchema(fields=[out_field]),
        rows=frame_from_rows([{column_name: v} for v in values], [column_name]),
    )
    context.log.info("Collected counter column", table=params.table, values=len(values))
    return TableSelection(tables=[table], source_files=list(packs.loaded))
