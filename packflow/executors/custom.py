"""User-defined schemas and the tables built on them."""

from typing import Any, Dict, List

from pydantic import Field, field_validator

from packflow.exceptions import ArchiveIOError, ConfigurationError, ReferenceNotFoundError
from packflow.executors.common import NodeParams, expect
from packflow.node import NodeContext
from packflow.payloads import (
    DB_PREFIX,
    CustomColumn,
    CustomSchema,
    PackFile,
    PackFiles,
    PackTable,
    TableSelection,
    file_tail,
    frame_from_rows,
)
from packflow.schema import FieldType

# -------------------------------------------------------------------------
# 1. Custom schema
# -------------------------------------------------------------------------


class SchemaColumn(NodeParams):
    name: str = ""
    type: FieldType = FieldType.STRING_U8

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, value):
        return (value or "").strip()


class CustomSchemaParams(NodeParams):
    schema_columns: List[SchemaColumn] = Field(default_factory=list)


def custom_schema(context: NodeContext, params: CustomSchemaParams, data) -> CustomSchema:
    for i, column in enumerate(params.schema_columns):
        if not column.name:
            raise ConfigurationError(f"Schema column {i} has no name")
    if not params.schema_columns:
        context.log.warning("Custom schema has no columns")
    return CustomSchema(columns=[CustomColumn(name=c.name, field_type=c.type.value) for c in params.schema_columns])


def _schema_table(name: str, schema: CustomSchema, records: List[Dict[str, Any]], source=None) -> PackTable:
    table_schema = schema.to_table_schema()
    if table_schema.fields:
        table_schema.fields[0].is_key = True
    table_schema.version = 1
    return PackTable(
        name=DB_PREFIX + name,
        file_name=f"{DB_PREFIX}{name}\\{name}",
        schema=table_schema,
        rows=frame_from_rows(records, table_schema.field_names),
        source=source,
    )


# -------------------------------------------------------------------------
# 2. Read TSV from pack
# -------------------------------------------------------------------------


class ReadTsvParams(NodeParams):
    tsv_file_name: str = Field("", description="Entry name suffix, e.g. 'text/my_units.tsv'")

    @field_validator("tsv_file_name", mode="before")
    @classmethod
    def _backslashes(cls, value):
        return (value or "").strip().replace("/", "\\")


def _find_text_entry(context: NodeContext, packs: List[PackFile], wanted: str):
    suffix = wanted.lower()
    for pack in packs:
        try:
            archive = context.archive.read_archive(pack.path)
        except ArchiveIOError as e:
            context.log.warning("Skipping unreadable pack", pack=pack.name, error=str(e))
            continue
        for entry in archive.entries:
            if entry.name.lower().endswith(suffix) and isinstance(entry.data, str):
                return entry.data, pack
    return None, None


def read_tsv_from_pack(context: NodeContext, params: ReadTsvParams, data) -> TableSelection:
    """
    Reads a TSV text entry and maps its cells onto a custom schema by
    position. The header line is skipped; short lines are padded with
    blanks. Packs come from the ``packs`` input, else the enabled mods.
    """
    schema_data, packs_data = data if isinstance(data, tuple) else (data, None)
    schema = expect(schema_data, CustomSchema)
    if not params.tsv_file_name or not schema.columns:
        context.log.warning("TSV file name or schema columns missing")
        return TableSelection()

    if packs_data is not None:
        packs = [p for p in expect(packs_data, PackFiles).files if p.path]
    else:
        packs = [
            PackFile(name=m.name, path=m.path, loaded=True)
            for m in context.catalog.enabled_mods()
            if context.archive.exists(m.path)
        ]

    text, pack = _find_text_entry(context, packs, params.tsv_file_name)
    if text is None:
        raise ReferenceNotFoundError(f"TSV file \"{params.tsv_file_name}\" not found in any searched pack")

    lines = [line.rstrip("\r") for line in text.split("\n") if line.strip()]
    names = [c.name for c in schema.columns]
    records = []
    for line in lines[1:]:
        cells = line.split("\t")
        records.append({name: cells[i] if i < len(cells) else "" for i, name in enumerate(names)})

    stem = file_tail(params.tsv_file_name)
    if stem.lower().endswith(".tsv"):
        stem = stem[:-4]
    table = _schema_table(f"_tsv_{stem}", schema, records, source=pack)
    context.log.info("Read TSV entry", entry=params.tsv_file_name, pack=pack.name, rows=len(records))
    return TableSelection(tables=[table], source_files=[pack])


# -------------------------------------------------------------------------
# 3. Custom rows
# -------------------------------------------------------------------------


class CustomRowsParams(NodeParams):
    custom_rows: List[Dict[str, Any]] = Field(default_factory=list)


def custom_rows_input(context: NodeContext, params: CustomRowsParams, data) -> TableSelection:
    schema = expect(data, CustomSchema)
    if not schema.columns or not params.custom_rows:
        return TableSelection()

    names = [c.name for c in schema.columns]
    records = [
        {name: "" if row.get(name) is None else str(row.get(name)) for name in names}
        for row in params.custom_rows
    ]
    table = _schema_table(f"_custom_{context.node_id}", schema, records)
    return TableSelection(tables=[table])
