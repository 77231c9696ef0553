"""Schema registry: table name -> versioned field definitions."""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from packflow.exceptions import ReferenceNotFoundError
from packflow.utils.config_loader import load_document
from packflow.utils.logging import logger


class FieldType(str, Enum):
    BOOLEAN = "Boolean"
    OPTIONAL_STRING_U8 = "OptionalStringU8"
    STRING_U8 = "StringU8"
    OPTIONAL_STRING_U16 = "OptionalStringU16"
    STRING_U16 = "StringU16"
    F32 = "F32"
    F64 = "F64"
    I16 = "I16"
    I32 = "I32"
    I64 = "I64"
    COLOUR_RGB = "ColourRGB"

    @property
    def is_integer(self) -> bool:
        return self in (FieldType.I16, FieldType.I32, FieldType.I64)

    @property
    def is_float(self) -> bool:
        return self in (FieldType.F32, FieldType.F64)

    @property
    def is_numeric(self) -> bool:
        return self.is_integer or self.is_float

    @property
    def default_cell(self) -> str:
        """Cell value used when nothing else supplies one."""
        if self.is_numeric:
            return "0"
        if self == FieldType.BOOLEAN:
            return "false"
        return ""


class SchemaField(BaseModel):
    """One column of a table schema."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str = Field(..., description="Column name")
    field_type: FieldType = Field(FieldType.STRING_U8, description="Storage type of the column")
    is_key: bool = Field(False, description="Part of the table's primary key")
    is_reference: List[str] = Field(
        default_factory=list, description="[table, column] this column references"
    )
    default_value: Optional[str] = Field(None, description="Default cell value")
    description: str = Field("", description="Human readable description")
    is_filename: bool = Field(False, description="Column holds a file path")

    @field_validator("is_reference", mode="before")
    @classmethod
    def _normalize_reference(cls, value: Any) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]

    @property
    def reference_table(self) -> Optional[str]:
        return self.is_reference[0] if self.is_reference else None

    @property
    def reference_column(self) -> Optional[str]:
        return self.is_reference[1] if len(self.is_reference) > 1 and self.is_reference[1] else None

    def coerce(self, cell: Any) -> Any:
        """Convert a string cell to the Python value written to an archive."""
        text = "" if cell is None else str(cell)
        if self.field_type.is_integer:
            try:
                return int(float(text)) if text else 0
            except ValueError:
                return 0
        if self.field_type.is_float:
            try:
                return float(text) if text else 0.0
            except ValueError:
                return 0.0
        if self.field_type == FieldType.BOOLEAN:
            return text.strip().lower() in ("true", "1", "yes")
        return text


class TableSchema(BaseModel):
    """One version of a table's layout."""

    version: int = 0
    fields: List[SchemaField] = Field(default_factory=list)

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def field(self, name: str) -> Optional[SchemaField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def key_field(self) -> Optional[SchemaField]:
        """First key column, falling back to the first column."""
        for f in self.fields:
            if f.is_key:
                return f
        return self.fields[0] if self.fields else None

    def reference_fields(self, table_name: str) -> List[SchemaField]:
        """Columns that reference ``table_name``."""
        return [f for f in self.fields if f.reference_table == table_name]

    @classmethod
    def from_columns(cls, columns: Iterable[str], field_type: FieldType = FieldType.STRING_U8):
        return cls(fields=[SchemaField(name=c, field_type=field_type) for c in columns])


class SchemaRegistry:
    """Read-only lookup of table schemas by name and version."""

    def __init__(self, tables: Optional[Dict[str, List[TableSchema]]] = None):
        self._tables: Dict[str, List[TableSchema]] = {
            name: sorted(versions, key=lambda s: s.version) for name, versions in (tables or {}).items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaRegistry":
        """Build from ``{table_name: [{version, fields: [...]}, ...]}``."""
        tables = {}
        for name, versions in data.items():
            if isinstance(versions, dict):
                versions = [versions]
            tables[name] = [TableSchema.model_validate(v) for v in versions]
        return cls(tables)

    @classmethod
    def from_file(cls, path: str) -> "SchemaRegistry":
        logger.debug("Loading schema registry", path=path)
        registry = cls.from_dict(load_document(path))
        logger.info("Schema registry loaded", path=path, tables=len(registry))
        return registry

    def __len__(self) -> int:
        return len(self._tables)

    def __contains__(self, table_name: str) -> bool:
        return table_name in self._tables

    def table_names(self) -> List[str]:
        return list(self._tables)

    def get(self, table_name: str, version: Optional[int] = None) -> TableSchema:
        """Return the schema of ``table_name`` at ``version`` (latest if None).

        Raises:
            ReferenceNotFoundError: If the table or version is unknown
        """
        versions = self._tables.get(table_name)
        if not versions:
            raise ReferenceNotFoundError(f"No schema registered for table '{table_name}'")
        if version is None:
            return versions[-1]
        for schema in versions:
            if schema.version == version:
                return schema
        available = ", ".join(str(s.version) for s in versions)
        raise ReferenceNotFoundError(
            f"No schema version {version} for table '{table_name}' (available: {available})"
        )

    def latest(self, table_name: str) -> TableSchema:
        return self.get(table_name)

    def referencing_tables(self, table_name: str) -> List[str]:
        """Tables whose latest schema has a column referencing ``table_name``."""
        return [
            name
            for name, versions in self._tables.items()
            if versions[-1].reference_fields(table_name)
        ]
