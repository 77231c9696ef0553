"""Port type vocabulary, node kinds and the connection compatibility rules."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional, Tuple

from packflow.exceptions import ValidationError

if TYPE_CHECKING:
    from packflow.config import Connection, Graph, Node


class PortType(str, Enum):
    PACK_FILES = "PackFiles"
    TABLE_SELECTION = "TableSelection"
    NESTED_TABLE_SELECTION = "NestedTableSelection"
    INDEXED_TABLE = "IndexedTable"
    COLUMN_SELECTION = "ColumnSelection"
    CHANGED_COLUMN_SELECTION = "ChangedColumnSelection"
    TEXT = "Text"
    TEXT_LINES = "TextLines"
    GROUPED_TEXT = "GroupedText"
    CUSTOM_SCHEMA = "CustomSchema"


class NodeKind(str, Enum):
    # Sources
    PACKED_FILES = "packedfiles"
    PACK_FILES_DROPDOWN = "packfilesdropdown"
    ALL_ENABLED_MODS = "allenabledmods"
    # Selection
    TABLE_SELECTION = "tableselection"
    TABLE_SELECTION_DROPDOWN = "tableselectiondropdown"
    COLUMN_SELECTION = "columnselection"
    COLUMN_SELECTION_DROPDOWN = "columnselectiondropdown"
    GROUP_BY_COLUMNS = "groupbycolumns"
    # Filters
    FILTER = "filter"
    MULTI_FILTER = "multifilter"
    DEDUPLICATE = "deduplicate"
    # References
    REFERENCE_LOOKUP = "referencelookup"
    REVERSE_REFERENCE_LOOKUP = "reversereferencelookup"
    # Index / join
    INDEX_TABLE = "indextable"
    LOOKUP = "lookup"
    FLATTEN_NESTED = "flattennested"
    AGGREGATE_NESTED = "aggregatenested"
    EXTRACT_TABLE = "extracttable"
    GROUP_BY = "groupby"
    # Row generation
    GENERATE_ROWS = "generaterows"
    ADD_NEW_COLUMN = "addnewcolumn"
    # Numeric change pipeline
    NUMERIC_ADJUSTMENT = "numericadjustment"
    MATH_MAX = "mathmax"
    MATH_CEIL = "mathceil"
    MERGE_CHANGES = "mergechanges"
    # Text
    TEXT_SURROUND = "textsurround"
    APPEND_TEXT = "appendtext"
    TEXT_JOIN = "textjoin"
    GROUPED_COLUMNS_TO_TEXT = "groupedcolumnstotext"
    # Terminal / export
    SAVE_CHANGES = "savechanges"
    DUMP_TO_TSV = "dumptotsv"
    GET_COUNTER_COLUMN = "getcountercolumn"
    # Custom
    CUSTOM_SCHEMA = "customschema"
    READ_TSV_FROM_PACK = "readtsvfrompack"
    CUSTOM_ROWS_INPUT = "customrowsinput"


class FanIn(str, Enum):
    """How a node's single logical input is computed from its connections."""

    SINGLE = "single"
    MERGE_LIST = "merge_list"
    SAVE_PRIORITY = "save_priority"
    NAMED = "named"
    TABLE_UNION = "table_union"


# Handle used for nodes with one unnamed input port
DEFAULT_INPUT = "input"
ELSE_HANDLE = "else"

_TEXT_FAMILY = frozenset({PortType.TEXT, PortType.TEXT_LINES, PortType.GROUPED_TEXT})

# Per-kind unions on top of exact equality
COMPATIBILITY_UNIONS: Dict[NodeKind, FrozenSet[PortType]] = {
    NodeKind.TEXT_SURROUND: _TEXT_FAMILY,
    NodeKind.APPEND_TEXT: _TEXT_FAMILY,
    NodeKind.TEXT_JOIN: frozenset({PortType.TEXT_LINES, PortType.GROUPED_TEXT}),
    NodeKind.SAVE_CHANGES: frozenset(
        {PortType.CHANGED_COLUMN_SELECTION, PortType.TEXT, PortType.TABLE_SELECTION}
    ),
}


@dataclass(frozen=True)
class NodePorts:
    """Declared ports of one node kind.

    ``inputs`` maps an input handle to the port types declared on it;
    nodes with a single port use ``DEFAULT_INPUT``. ``output`` is None for
    terminal nodes.
    """

    inputs: Dict[str, Tuple[PortType, ...]] = field(default_factory=dict)
    output: Optional[PortType] = None
    fan_in: FanIn = FanIn.SINGLE
    else_output: bool = False
    fan_out: bool = False

    @property
    def named_inputs(self) -> Tuple[str, ...]:
        return tuple(h for h in self.inputs if h != DEFAULT_INPUT)


def _single(*types: PortType) -> Dict[str, Tuple[PortType, ...]]:
    return {DEFAULT_INPUT: tuple(types)}


_P = PortType

NODE_PORTS: Dict[NodeKind, NodePorts] = {
    NodeKind.PACKED_FILES: NodePorts(output=_P.PACK_FILES),
    NodeKind.PACK_FILES_DROPDOWN: NodePorts(output=_P.PACK_FILES),
    NodeKind.ALL_ENABLED_MODS: NodePorts(output=_P.PACK_FILES),
    NodeKind.TABLE_SELECTION: NodePorts(_single(_P.PACK_FILES), _P.TABLE_SELECTION),
    NodeKind.TABLE_SELECTION_DROPDOWN: NodePorts(_single(_P.PACK_FILES), _P.TABLE_SELECTION),
    NodeKind.COLUMN_SELECTION: NodePorts(_single(_P.TABLE_SELECTION), _P.COLUMN_SELECTION),
    NodeKind.COLUMN_SELECTION_DROPDOWN: NodePorts(
        _single(_P.TABLE_SELECTION), _P.COLUMN_SELECTION
    ),
    NodeKind.GROUP_BY_COLUMNS: NodePorts(_single(_P.TABLE_SELECTION), _P.GROUPED_TEXT),
    NodeKind.FILTER: NodePorts(
        _single(_P.TABLE_SELECTION), _P.TABLE_SELECTION, else_output=True
    ),
    NodeKind.MULTI_FILTER: NodePorts(
        _single(_P.TABLE_SELECTION), _P.TABLE_SELECTION, fan_out=True
    ),
    NodeKind.DEDUPLICATE: NodePorts(_single(_P.TABLE_SELECTION), _P.TABLE_SELECTION),
    NodeKind.REFERENCE_LOOKUP: NodePorts(_single(_P.TABLE_SELECTION), _P.TABLE_SELECTION),
    NodeKind.REVERSE_REFERENCE_LOOKUP: NodePorts(
        _single(_P.TABLE_SELECTION), _P.TABLE_SELECTION
    ),
    NodeKind.INDEX_TABLE: NodePorts(_single(_P.TABLE_SELECTION), _P.INDEXED_TABLE),
    NodeKind.LOOKUP: NodePorts(
        {
            "source": (_P.TABLE_SELECTION,),
            "index": (_P.INDEXED_TABLE, _P.TABLE_SELECTION),
        },
        _P.TABLE_SELECTION,
        fan_in=FanIn.NAMED,
    ),
    NodeKind.FLATTEN_NESTED: NodePorts(
        _single(_P.NESTED_TABLE_SELECTION), _P.TABLE_SELECTION
    ),
    NodeKind.AGGREGATE_NESTED: NodePorts(
        _single(_P.NESTED_TABLE_SELECTION), _P.NESTED_TABLE_SELECTION
    ),
    NodeKind.EXTRACT_TABLE: NodePorts(_single(_P.TABLE_SELECTION), _P.TABLE_SELECTION),
    NodeKind.GROUP_BY: NodePorts(_single(_P.TABLE_SELECTION), _P.TABLE_SELECTION),
    NodeKind.GENERATE_ROWS: NodePorts(
        _single(_P.TABLE_SELECTION),
        _P.TABLE_SELECTION,
        fan_in=FanIn.TABLE_UNION,
        fan_out=True,
    ),
    NodeKind.ADD_NEW_COLUMN: NodePorts(_single(_P.TABLE_SELECTION), _P.TABLE_SELECTION),
    NodeKind.NUMERIC_ADJUSTMENT: NodePorts(
        _single(_P.COLUMN_SELECTION, _P.CHANGED_COLUMN_SELECTION),
        _P.CHANGED_COLUMN_SELECTION,
    ),
    NodeKind.MATH_MAX: NodePorts(
        _single(_P.COLUMN_SELECTION, _P.CHANGED_COLUMN_SELECTION),
        _P.CHANGED_COLUMN_SELECTION,
    ),
    NodeKind.MATH_CEIL: NodePorts(
        _single(_P.COLUMN_SELECTION, _P.CHANGED_COLUMN_SELECTION),
        _P.CHANGED_COLUMN_SELECTION,
    ),
    NodeKind.MERGE_CHANGES: NodePorts(
        _single(_P.CHANGED_COLUMN_SELECTION),
        _P.CHANGED_COLUMN_SELECTION,
        fan_in=FanIn.MERGE_LIST,
    ),
    NodeKind.TEXT_SURROUND: NodePorts(_single(_P.TEXT), _P.TEXT),
    NodeKind.APPEND_TEXT: NodePorts(_single(_P.TEXT), _P.TEXT),
    NodeKind.TEXT_JOIN: NodePorts(_single(_P.TEXT_LINES), _P.TEXT),
    NodeKind.GROUPED_COLUMNS_TO_TEXT: NodePorts(_single(_P.GROUPED_TEXT), _P.TEXT),
    NodeKind.SAVE_CHANGES: NodePorts(
        _single(_P.CHANGED_COLUMN_SELECTION), None, fan_in=FanIn.SAVE_PRIORITY
    ),
    NodeKind.DUMP_TO_TSV: NodePorts(_single(_P.TABLE_SELECTION), _P.TABLE_SELECTION),
    NodeKind.GET_COUNTER_COLUMN: NodePorts(_single(_P.PACK_FILES), _P.TABLE_SELECTION),
    NodeKind.CUSTOM_SCHEMA: NodePorts(output=_P.CUSTOM_SCHEMA),
    NodeKind.READ_TSV_FROM_PACK: NodePorts(
        {"schema": (_P.CUSTOM_SCHEMA,), "packs": (_P.PACK_FILES,)},
        _P.TABLE_SELECTION,
        fan_in=FanIn.NAMED,
    ),
    NodeKind.CUSTOM_ROWS_INPUT: NodePorts(_single(_P.CUSTOM_SCHEMA), _P.TABLE_SELECTION),
}

# Kinds whose output port type follows whatever text payload they receive
OUTPUT_FOLLOWS_INPUT = frozenset({NodeKind.TEXT_SURROUND, NodeKind.APPEND_TEXT})


def validate(
    source_type: Optional[PortType], target_type: Optional[PortType], target_kind: NodeKind
) -> bool:
    """Decide whether ``source_type`` may feed a port declared as ``target_type``.

    Exact equality is always legal; a few target kinds additionally accept
    a fixed union of types (see ``COMPATIBILITY_UNIONS``).
    """
    if source_type is None or target_type is None:
        return False
    if source_type == target_type:
        return True
    union = COMPATIBILITY_UNIONS.get(NodeKind(target_kind))
    return union is not None and PortType(source_type) in union


def ports_for(kind: NodeKind) -> NodePorts:
    return NODE_PORTS[NodeKind(kind)]


def declared_output_type(node: "Node", source_handle: Optional[str] = None) -> Optional[PortType]:
    """Port type a node emits on ``source_handle``."""
    ports = ports_for(node.kind)
    if source_handle == ELSE_HANDLE:
        return PortType.TABLE_SELECTION if ports.else_output else None
    if source_handle and ports.fan_out:
        return PortType.TABLE_SELECTION
    if node.output_type is not None and node.kind in OUTPUT_FOLLOWS_INPUT:
        return node.output_type
    if node.kind == NodeKind.LOOKUP:
        join_type = node.configuration.get("join_type") or node.configuration.get("joinType")
        if join_type == "nested":
            return PortType.NESTED_TABLE_SELECTION
    return ports.output


def input_port(node: "Node", target_handle: Optional[str]) -> Tuple[PortType, ...]:
    """Port types declared on the input ``target_handle`` of ``node``."""
    ports = ports_for(node.kind)
    if target_handle and target_handle in ports.inputs:
        return ports.inputs[target_handle]
    if DEFAULT_INPUT in ports.inputs:
        return ports.inputs[DEFAULT_INPUT]
    if not target_handle and ports.named_inputs:
        # Unlabeled connection into a named-input node: any of its ports may take it
        return tuple(t for types in ports.inputs.values() for t in types)
    return ()


def resolved_output_type(
    graph: "Graph", node: "Node", source_handle: Optional[str] = None, _seen=None
) -> Optional[PortType]:
    """Like ``declared_output_type``, but text pass-through nodes without an
    explicit ``output_type`` take the type of whatever feeds them."""
    if node.kind not in OUTPUT_FOLLOWS_INPUT or node.output_type is not None:
        return declared_output_type(node, source_handle)
    seen = _seen or set()
    incoming = graph.incoming(node.id)
    if node.id in seen or not incoming:
        return declared_output_type(node, source_handle)
    seen.add(node.id)
    upstream = incoming[-1]
    inferred = resolved_output_type(
        graph, graph.node(upstream.source_id), upstream.source_handle, seen
    )
    return inferred if inferred in _TEXT_FAMILY else declared_output_type(node, source_handle)


def check_connection(graph: "Graph", connection: "Connection") -> None:
    """Raise ValidationError if ``connection`` pairs incompatible ports."""
    source = graph.node(connection.source_id)
    target = graph.node(connection.target_id)
    source_type = resolved_output_type(graph, source, connection.source_handle)
    accepted = input_port(target, connection.target_handle)

    if not any(validate(source_type, t, target.kind) for t in accepted):
        raise ValidationError(
            source_type.value if source_type else None,
            " | ".join(t.value for t in accepted) if accepted else None,
            target.kind.value,
            connection_id=connection.id,
        )
