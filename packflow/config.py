"""Configuration models: graph submission, persistence document, engine settings."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from packflow.archive import ArchiveStore, LocalArchiveStore, MemoryArchiveStore, ModCatalog, ModEntry
from packflow.exceptions import GraphStructureError
from packflow.ports import NodeKind, PortType
from packflow.schema import SchemaRegistry
from packflow.utils.config_loader import load_document, load_yaml_with_env

DOCUMENT_VERSION = "1.0"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================
# Graph Model
# ============================================


class Node(_CamelModel):
    """A node of the dataflow graph."""

    id: str = Field(..., description="Unique node id")
    kind: NodeKind = Field(..., description="Node kind tag")
    configuration: Dict[str, Any] = Field(
        default_factory=dict, description="Kind-specific parameters"
    )
    position: Optional[Dict[str, float]] = Field(
        None, description="Editor layout; ignored by the engine"
    )
    output_type: Optional[PortType] = Field(
        None, description="Output port override for pass-through text nodes"
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_editor_shape(cls, data: Any) -> Any:
        # Editor documents spell these as {type, data}
        if isinstance(data, dict):
            data = dict(data)
            if "kind" not in data and "type" in data:
                data["kind"] = data.pop("type")
            if "configuration" not in data and isinstance(data.get("data"), dict):
                data["configuration"] = data.pop("data")
        return data


class Connection(_CamelModel):
    """A directed edge between two nodes."""

    id: str
    source_id: str
    target_id: str
    source_handle: Optional[str] = Field(
        None, description="Named output of a fan-out node ('else' for filters)"
    )
    target_handle: Optional[str] = Field(
        None, description="Named input of a fan-in node (e.g. 'source' or 'index')"
    )


class Graph(BaseModel):
    """A graph submitted for exactly one run."""

    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ids(self):
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise GraphStructureError(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        connection_ids = set()
        for conn in self.connections:
            if conn.id in connection_ids:
                raise GraphStructureError(f"Duplicate connection id '{conn.id}'")
            connection_ids.add(conn.id)
            for endpoint in (conn.source_id, conn.target_id):
                if endpoint not in seen:
                    raise GraphStructureError(
                        f"Connection '{conn.id}' references unknown node '{endpoint}'"
                    )
        return self

    def node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def incoming(self, node_id: str) -> List[Connection]:
        """Connections into ``node_id`` in document order."""
        return [c for c in self.connections if c.target_id == node_id]

    def outgoing(self, node_id: str) -> List[Connection]:
        return [c for c in self.connections if c.source_id == node_id]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Graph":
        return cls(
            nodes=[Node.model_validate(n) for n in data.get("nodes", [])],
            connections=[Connection.model_validate(c) for c in data.get("connections", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.model_dump(mode="json", by_alias=True, exclude_none=True) for n in self.nodes],
            "connections": [
                c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in self.connections
            ],
        }


class GraphDocument(BaseModel):
    """Versioned persistence document exchanged with the editor.

    Example:
        ```python
        doc = GraphDocument.from_graph(graph, options={"theme": "dark"})
        doc.save("flows/land_units.json")
        graph = GraphDocument.load("flows/land_units.json").to_graph()
        ```
    """

    version: str = DOCUMENT_VERSION
    timestamp: Optional[str] = None
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_graph(cls, graph: Graph, options: Optional[Dict[str, Any]] = None) -> "GraphDocument":
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            nodes=[n.model_copy(deep=True) for n in graph.nodes],
            connections=[c.model_copy() for c in graph.connections],
            options=dict(options or {}),
            metadata={
                "nodeCount": len(graph.nodes),
                "connectionCount": len(graph.connections),
            },
        )

    def to_graph(self) -> Graph:
        return Graph(
            nodes=[n.model_copy(deep=True) for n in self.nodes],
            connections=[c.model_copy() for c in self.connections],
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "GraphDocument":
        return cls.model_validate(json.loads(text))

    def save(self, path: str) -> None:
        """Write as YAML or JSON depending on the extension."""
        with open(path, "w", encoding="utf-8") as f:
            if path.lower().endswith((".yaml", ".yml")):
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            else:
                f.write(self.to_json())

    @classmethod
    def load(cls, path: str) -> "GraphDocument":
        data = load_document(path)
        if "version" not in data:
            # Bare {nodes, connections} submissions are accepted as documents
            data = {**data, "version": DOCUMENT_VERSION}
        return cls.model_validate(data)


# ============================================
# Engine Configuration
# ============================================


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LoggingConfig(BaseModel):
    level: LogLevel = LogLevel.INFO
    structured: bool = Field(False, description="Emit JSON lines instead of rich console output")


class ArchiveBackend(str, Enum):
    LOCAL = "local"
    MEMORY = "memory"


class EngineConfig(BaseModel):
    """
    Engine settings loaded from YAML.

    ```yaml
    data_dir: "${GAME_DATA_DIR}"
    base_game_pack: db.pack
    output_dir: ./output
    schema_file: schemas.yaml
    mods:
      - name: my_mod.pack
        path: ./mods/my_mod.pack
    logging:
      level: INFO
      structured: false
    ```
    """

    data_dir: Optional[str] = Field(None, description="Directory holding the base game packs")
    base_game_pack: str = Field("db.pack", description="Base game database pack name")
    output_dir: str = Field("output", description="Where save and export nodes write")
    mods: List[ModEntry] = Field(default_factory=list, description="Known mod packs")
    schema_file: Optional[str] = Field(None, description="YAML/JSON schema registry document")
    archive_backend: ArchiveBackend = ArchiveBackend.LOCAL
    reset_counters: bool = Field(True, description="Reset counter sequences at each run start")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "EngineConfig":
        return cls.model_validate(load_yaml_with_env(path))

    def build_catalog(self) -> ModCatalog:
        return ModCatalog(self.mods, data_dir=self.data_dir, base_game_pack=self.base_game_pack)

    def build_store(self) -> ArchiveStore:
        if self.archive_backend == ArchiveBackend.MEMORY:
            return MemoryArchiveStore()
        return LocalArchiveStore()

    def build_schemas(self) -> SchemaRegistry:
        if not self.schema_file:
            return SchemaRegistry()
        return SchemaRegistry.from_file(self.schema_file)
