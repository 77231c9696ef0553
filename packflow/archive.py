"""Archive store collaborators and the mod catalog.

An archive ("pack") is a list of named entries. Database tables live under
``db\\<table>\\<file>`` and carry ``{"version", "rows", "fields"?}`` data;
any other entry holds text. Binary pack parsing is out of scope: the
stores here keep archives as JSON documents on disk or in memory.
"""

import copy
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from packflow.exceptions import ArchiveIOError, ReferenceNotFoundError
from packflow.payloads import DB_PREFIX, PackFile, PackTable, frame_from_rows
from packflow.schema import SchemaField, SchemaRegistry, TableSchema
from packflow.utils.logging import logger


class ArchiveEntry(BaseModel):
    name: str
    data: Any = None

    @property
    def is_table(self) -> bool:
        return isinstance(self.data, dict) and "rows" in self.data

    @property
    def table_name(self) -> Optional[str]:
        """``db\\<table>\\<file>`` -> ``<table>``; None for non-table entries."""
        if not self.name.startswith(DB_PREFIX):
            return None
        parts = self.name[len(DB_PREFIX):].split("\\")
        return parts[0] if len(parts) >= 2 else None


class Archive(BaseModel):
    entries: List[ArchiveEntry] = Field(default_factory=list)

    def entry(self, name: str) -> Optional[ArchiveEntry]:
        for e in self.entries:
            if e.name == name:
                return e
        return None

    def merge(self, entries: List[ArchiveEntry]) -> "Archive":
        """Return a new archive with ``entries`` replacing same-named ones."""
        incoming = {e.name for e in entries}
        kept = [e for e in self.entries if e.name not in incoming]
        return Archive(entries=kept + list(entries))


class ArchiveStore(ABC):
    """Reads and writes archives by path.

    Writes to the same path are serialized so saves that share one output
    archive are applied in a total order.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, path: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(os.path.normpath(path), threading.Lock())

    @abstractmethod
    def read_archive(self, path: str) -> Archive:
        """Read the archive at ``path``.

        Raises:
            ArchiveIOError: If the archive is missing or unreadable
        """

    @abstractmethod
    def write_archive(self, path: str, archive: Archive) -> None:
        """Replace the archive at ``path``."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Whether an archive exists at ``path``."""

    def merge_entries(self, path: str, entries: List[ArchiveEntry]) -> Archive:
        """Add ``entries`` to the archive at ``path``, creating it if needed."""
        with self.lock_for(path):
            existing = self.read_archive(path) if self.exists(path) else Archive()
            merged = existing.merge(entries)
            self.write_archive(path, merged)
        logger.debug("Archive entries merged", path=path, written=len(entries), total=len(merged.entries))
        return merged


class LocalArchiveStore(ArchiveStore):
    """Archives stored as JSON documents on the local filesystem."""

    def read_archive(self, path: str) -> Archive:
        if not os.path.exists(path):
            raise ArchiveIOError("Archive not found", path=path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Archive.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            raise ArchiveIOError(f"Cannot read archive: {e}", path=path) from e

    def write_archive(self, path: str, archive: Archive) -> None:
        directory = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(archive.model_dump(), f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise ArchiveIOError(f"Cannot write archive: {e}", path=path) from e

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)


class MemoryArchiveStore(ArchiveStore):
    """In-process archive store, keyed by normalized path."""

    def __init__(self, archives: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._archives: Dict[str, Archive] = {}
        for path, archive in (archives or {}).items():
            self.write_archive(path, archive if isinstance(archive, Archive) else Archive.model_validate(archive))

    def read_archive(self, path: str) -> Archive:
        key = os.path.normpath(path)
        if key not in self._archives:
            raise ArchiveIOError("Archive not found", path=path)
        return copy.deepcopy(self._archives[key])

    def write_archive(self, path: str, archive: Archive) -> None:
        self._archives[os.path.normpath(path)] = copy.deepcopy(archive)

    def exists(self, path: str) -> bool:
        return os.path.normpath(path) in self._archives

    def paths(self) -> List[str]:
        return list(self._archives)


class ModEntry(BaseModel):
    name: str = Field(..., description="Pack file name, e.g. 'my_mod.pack'")
    path: str = Field(..., description="Archive path passed to the archive store")
    enabled: bool = Field(True, description="Whether the mod is active")


class ModCatalog:
    """Resolves pack names to archive paths."""

    def __init__(
        self,
        mods: Optional[List[ModEntry]] = None,
        data_dir: Optional[str] = None,
        base_game_pack: str = "db.pack",
    ):
        self.mods = list(mods or [])
        self.data_dir = data_dir
        self.base_game_pack = base_game_pack

    @property
    def base_game_path(self) -> str:
        if self.data_dir:
            return os.path.join(self.data_dir, self.base_game_pack)
        return self.base_game_pack

    def enabled_mods(self) -> List[ModEntry]:
        return [m for m in self.mods if m.enabled]

    def resolve(self, name: str, store: ArchiveStore) -> Optional[str]:
        """Find the archive path for ``name``: enabled mods, all mods, then data dir."""
        wanted = name.lower()
        for candidates in (self.enabled_mods(), self.mods):
            for mod in candidates:
                if mod.name.lower() == wanted:
                    return mod.path
        if wanted == self.base_game_pack.lower() and store.exists(self.base_game_path):
            return self.base_game_path
        if self.data_dir:
            path = os.path.join(self.data_dir, name)
            if store.exists(path):
                return path
        if store.exists(name):
            return name
        return None

    def pack_file(self, name: str, store: ArchiveStore) -> PackFile:
        path = self.resolve(name, store)
        if path is None or not store.exists(path):
            return PackFile(name=name, path=path, loaded=False, error="File not found")
        return PackFile(name=name, path=path, loaded=True)

    def base_game_file(self, store: ArchiveStore) -> Optional[PackFile]:
        if not store.exists(self.base_game_path):
            return None
        return PackFile(name=self.base_game_pack, path=self.base_game_path, loaded=True)


def entry_schema(entry: ArchiveEntry, table_name: str, schemas: SchemaRegistry) -> TableSchema:
    """Schema of a table entry: embedded fields win over the registry."""
    data = entry.data
    if data.get("fields"):
        return TableSchema.model_validate({"version": data.get("version", 0), "fields": data["fields"]})
    return schemas.get(table_name, data.get("version"))


def entry_to_table(
    entry: ArchiveEntry, schemas: SchemaRegistry, source: Optional[PackFile] = None
) -> PackTable:
    """Decode a table entry into a PackTable with string cells."""
    table_name = entry.table_name
    if table_name is None or not entry.is_table:
        raise ReferenceNotFoundError(f"Entry '{entry.name}' is not a database table")

    schema = entry_schema(entry, table_name, schemas)
    columns = schema.field_names
    records = []
    for row in entry.data.get("rows", []):
        if isinstance(row, dict):
            records.append(row)
        else:
            records.append(dict(zip(columns, row)))
    return PackTable(
        name=DB_PREFIX + table_name,
        file_name=entry.name,
        schema=schema,
        rows=frame_from_rows(records, columns),
        source=source,
    )


def table_to_entry(table: PackTable, entry_name: str) -> ArchiveEntry:
    """Encode a PackTable as a self-describing table entry."""
    fields = [f for f in table.schema.fields if f.name in table.rows.columns]
    known = {f.name for f in fields}
    fields += [SchemaField(name=c) for c in table.rows.columns if c not in known]
    rows = []
    for record in table.rows.to_dict(orient="records"):
        rows.append([f.coerce(record.get(f.name, "")) for f in fields])
    return ArchiveEntry(
        name=entry_name,
        data={
            "version": table.schema.version,
            "fields": [f.model_dump() for f in fields],
            "rows": rows,
        },
    )


def read_tables(
    store: ArchiveStore, schemas: SchemaRegistry, pack: PackFile, table_names: Iterable[str]
) -> List[PackTable]:
    """All table entries of ``pack`` whose table is one of ``table_names``.

    Raises:
        ArchiveIOError: If the archive cannot be read
        ReferenceNotFoundError: If a matching entry has no known schema
    """
    wanted = {strip_db_prefix(n) for n in table_names}
    archive = store.read_archive(pack.path)
    tables = []
    for entry in archive.entries:
        if entry.table_name in wanted and entry.is_table:
            tables.append(entry_to_table(entry, schemas, source=pack))
    return tables


def strip_db_prefix(name: str) -> str:
    name = name.strip().replace("/", "\\")
    return name[len(DB_PREFIX):] if name.startswith(DB_PREFIX) else name
