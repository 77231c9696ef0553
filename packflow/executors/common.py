"""Helpers shared by the executor modules."""

import math
import re
from typing import Any, List, Optional, Tuple, Type

import pandas as pd
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from packflow.exceptions import InvalidInputTypeError
from packflow.payloads import PackTable, TableSelection
from packflow.schema import SchemaField, TableSchema

_NUMERIC_NOISE = re.compile(r"[^\d.\-]")


class NodeParams(BaseModel):
    """Base for executor params: snake_case fields, camelCase aliases accepted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def expect(data: Any, *types: Type, name: Optional[str] = None) -> Any:
    """Return ``data`` if it is one of ``types``.

    Raises:
        InvalidInputTypeError: Otherwise
    """
    if isinstance(data, types):
        return data
    expected = name or " or ".join(t.port_type.value for t in types)
    raise InvalidInputTypeError.expected(expected, data)


def split_lines(value: Any) -> List[str]:
    """Accept a list or a newline/comma separated string; drop blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        value = re.split(r"[\n,]", value)
    return [str(v).strip() for v in value if str(v).strip()]


def process_escapes(text: str) -> str:
    return text.replace("\\n", "\n").replace("\\t", "\t").replace("\\r", "\r")


def parse_number(value: Any) -> Optional[float]:
    """Lenient numeric parse: ``"12 gold"`` -> 12.0, non-numbers -> None."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return None if math.isnan(value) else float(value)
    cleaned = _NUMERIC_NOISE.sub("", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def strict_number(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def format_number(value: float) -> str:
    """Render numbers the way they appear in tables: ``12`` not ``12.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def empty_selection(source: Optional[TableSelection] = None) -> TableSelection:
    return TableSelection(source_files=list(source.source_files) if source else [])


def derived_schema(
    columns: List[str], sources: List[Tuple[str, TableSchema]], version: int = 0
) -> TableSchema:
    """Schema for a derived table.

    Each column keeps the type of the source field it was copied from;
    ``sources`` pairs a column prefix with the schema it came from.
    """
    fields = []
    for column in columns:
        original = None
        for prefix, schema in sources:
            if column.startswith(prefix):
                original = schema.field(column[len(prefix):])
                if original is not None:
                    break
        if original is not None:
            fields.append(original.model_copy(update={"name": column, "is_key": False}))
        else:
            fields.append(SchemaField(name=column))
    return TableSchema(version=version, fields=fields)


def concat_rows(tables: List[PackTable]) -> pd.DataFrame:
    frames = [t.rows for t in tables if len(t.rows.columns)]
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True, sort=False).fillna("")
