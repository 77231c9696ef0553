"""Typed payloads flowing between nodes, one variant per port type.

Every variant carries its ``port_type`` so executors can dispatch with
``isinstance`` and the scheduler can check compatibility at run time.
Table rows are ``pandas.DataFrame`` objects holding string cells whose
columns follow the table schema's field order.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Optional, Union

import pandas as pd

from packflow.ports import PortType
from packflow.schema import TableSchema

DB_PREFIX = "db\\"


def table_base_name(name: str) -> str:
    """``db\\land_units_tables\\data__`` -> ``land_units_tables``."""
    if name.startswith(DB_PREFIX):
        name = name[len(DB_PREFIX):]
    return name.split("\\", 1)[0]


def file_tail(file_name: str) -> str:
    """``db\\land_units_tables\\data__`` -> ``data__``."""
    return file_name.rsplit("\\", 1)[-1]


def frame_from_rows(rows: List[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    """Build a string-celled frame with exactly ``columns``, blanks for gaps."""
    df = pd.DataFrame.from_records(rows, columns=columns) if rows else pd.DataFrame(columns=columns)
    return df.fillna("").astype(str) if len(df) else df.astype(object)


@dataclass
class PackFile:
    name: str
    path: Optional[str] = None
    loaded: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"name": self.name, "path": self.path, "loaded": self.loaded}
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class PackTable:
    """One database table read from (or destined for) an archive."""

    name: str
    file_name: str
    schema: TableSchema
    rows: pd.DataFrame
    source: Optional[PackFile] = None

    @property
    def base_name(self) -> str:
        return table_base_name(self.name)

    @property
    def columns(self) -> List[str]:
        return list(self.rows.columns)

    def with_rows(self, rows: pd.DataFrame, **changes) -> "PackTable":
        return replace(self, rows=rows.reset_index(drop=True), **changes)

    def records(self) -> List[Dict[str, Any]]:
        return self.rows.to_dict(orient="records")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fileName": self.file_name,
            "sourceFile": self.source.to_dict() if self.source else None,
            "version": self.schema.version,
            "rowCount": len(self.rows),
            "rows": self.records(),
        }


@dataclass
class Payload:
    port_type: ClassVar[Optional[PortType]] = None

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class PackFiles(Payload):
    port_type: ClassVar[PortType] = PortType.PACK_FILES

    files: List[PackFile] = field(default_factory=list)

    @property
    def loaded(self) -> List[PackFile]:
        return [f for f in self.files if f.loaded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "files": [f.to_dict() for f in self.files],
            "count": len(self.files),
            "loadedCount": len(self.loaded),
        }


@dataclass
class TableSelection(Payload):
    port_type: ClassVar[PortType] = PortType.TABLE_SELECTION

    tables: List[PackTable] = field(default_factory=list)
    source_files: List[PackFile] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return sum(len(t.rows) for t in self.tables)

    @classmethod
    def union(cls, selections: List["TableSelection"]) -> "TableSelection":
        """Concatenate tables and source files (the latter deduplicated by path)."""
        merged = cls()
        seen_paths = set()
        for selection in selections:
            merged.tables.extend(selection.tables)
            merged.unresolved.extend(selection.unresolved)
            for pack in selection.source_files:
                key = pack.path or pack.name
                if key not in seen_paths:
                    seen_paths.add(key)
                    merged.source_files.append(pack)
        return merged

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.port_type.value,
            "tables": [t.to_dict() for t in self.tables],
            "sourceFiles": [f.to_dict() for f in self.source_files],
            "tableCount": len(self.tables),
        }
        if self.unresolved:
            result["unresolved"] = list(self.unresolved)
        return result


@dataclass
class NestedRow:
    source: Dict[str, Any]
    matches: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class NestedTableSelection(Payload):
    port_type: ClassVar[PortType] = PortType.NESTED_TABLE_SELECTION

    rows: List[NestedRow] = field(default_factory=list)
    source_table: Optional[PackTable] = None
    lookup_table: Optional[PackTable] = None
    source_columns: List[str] = field(default_factory=list)
    lookup_columns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "rows": [{"sourceRow": r.source, "lookupMatches": r.matches} for r in self.rows],
            "sourceTable": self.source_table.name if self.source_table else None,
            "lookupTable": self.lookup_table.name if self.lookup_table else None,
        }


@dataclass
class IndexedTable(Payload):
    port_type: ClassVar[PortType] = PortType.INDEXED_TABLE

    index_columns: List[str] = field(default_factory=list)
    index: Dict[str, pd.DataFrame] = field(default_factory=dict)
    source_table: Optional[PackTable] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "indexColumns": list(self.index_columns),
            "keyCount": len(self.index),
            "tableName": self.source_table.name if self.source_table else None,
        }


@dataclass
class ColumnSlice:
    """A table with the columns selected for a numeric change pipeline."""

    table: PackTable
    selected_columns: List[str] = field(default_factory=list)
    missing_columns: List[str] = field(default_factory=list)

    def copy(self) -> "ColumnSlice":
        return ColumnSlice(
            table=self.table.with_rows(self.table.rows.copy()),
            selected_columns=list(self.selected_columns),
            missing_columns=list(self.missing_columns),
        )

    def same_table(self, other: "ColumnSlice") -> bool:
        mine = self.table.source.path if self.table.source else None
        theirs = other.table.source.path if other.table.source else None
        return (
            self.table.name == other.table.name
            and self.table.file_name == other.table.file_name
            and mine == theirs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tableName": self.table.name,
            "fileName": self.table.file_name,
            "sourcePack": self.table.source.to_dict() if self.table.source else None,
            "selectedColumns": list(self.selected_columns),
            "missingColumns": list(self.missing_columns),
            "data": self.table.rows[self.selected_columns].to_dict(orient="records"),
        }


@dataclass
class ColumnSelection(Payload):
    port_type: ClassVar[PortType] = PortType.COLUMN_SELECTION

    columns: List[ColumnSlice] = field(default_factory=list)

    @property
    def selected_column_count(self) -> int:
        return sum(len(c.selected_columns) for c in self.columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "columns": [c.to_dict() for c in self.columns],
            "selectedColumnCount": self.selected_column_count,
        }


@dataclass
class ChangedColumnSelection(Payload):
    port_type: ClassVar[PortType] = PortType.CHANGED_COLUMN_SELECTION

    adjusted: List[ColumnSlice] = field(default_factory=list)
    original: List[ColumnSlice] = field(default_factory=list)
    applied_formula: str = ""

    def copy(self) -> "ChangedColumnSelection":
        return ChangedColumnSelection(
            adjusted=[c.copy() for c in self.adjusted],
            original=[c.copy() for c in self.original],
            applied_formula=self.applied_formula,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "adjustedInputData": [c.to_dict() for c in self.adjusted],
            "originalData": [c.to_dict() for c in self.original],
            "appliedFormula": self.applied_formula,
        }


@dataclass
class Text(Payload):
    port_type: ClassVar[PortType] = PortType.TEXT

    text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.port_type.value, "text": self.text}


@dataclass
class TextLines(Payload):
    port_type: ClassVar[PortType] = PortType.TEXT_LINES

    lines: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.port_type.value, "textLines": list(self.lines)}


@dataclass
class GroupedText(Payload):
    """Keys with their grouped values (``keys[i]`` owns ``values[i]``)."""

    port_type: ClassVar[PortType] = PortType.GROUPED_TEXT

    keys: List[str] = field(default_factory=list)
    values: List[List[str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "text": list(self.keys),
            "textLines": copy.deepcopy(self.values),
            "groupCount": len(self.keys),
        }


@dataclass
class CustomColumn:
    name: str
    field_type: str = "StringU8"


@dataclass
class CustomSchema(Payload):
    port_type: ClassVar[PortType] = PortType.CUSTOM_SCHEMA

    columns: List[CustomColumn] = field(default_factory=list)

    def to_table_schema(self) -> TableSchema:
        return TableSchema.model_validate(
            {"fields": [{"name": c.name, "field_type": c.field_type} for c in self.columns]}
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.port_type.value,
            "schemaColumns": [{"name": c.name, "type": c.field_type} for c in self.columns],
        }


@dataclass
class SaveResult(Payload):
    """Outcome of a terminal save; nothing connects downstream of it."""

    saved_to: str = ""
    format: str = ""
    entries: List[Dict[str, Any]] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "SaveResult",
            "savedTo": self.saved_to,
            "format": self.format,
            "entries": list(self.entries),
            "message": self.message,
        }


AnyPayload = Union[
    PackFiles,
    TableSelection,
    NestedTableSelection,
    IndexedTable,
    ColumnSelection,
    ChangedColumnSelection,
    Text,
    TextLines,
    GroupedText,
    CustomSchema,
    SaveResult,
]
