"""Custom exceptions for packflow."""

from typing import List, Optional


class PackflowException(Exception):
    """Base exception for all packflow errors."""

    pass


class ValidationError(PackflowException):
    """A connection pairs port types the target node does not accept."""

    def __init__(
        self,
        source_type: Optional[str],
        target_type: Optional[str],
        target_kind: str,
        connection_id: Optional[str] = None,
    ):
        self.source_type = source_type
        self.target_type = target_type
        self.target_kind = target_kind
        self.connection_id = connection_id
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        parts = ["ValidationError: "]
        if self.connection_id:
            parts.append(f"connection '{self.connection_id}' ")
        parts.append(
            f"cannot feed {self.source_type or 'nothing'} into "
            f"{self.target_kind} (accepts {self.target_type or 'no input'})"
        )
        return "".join(parts)


class GraphStructureError(PackflowException):
    """Graph cannot be scheduled (no starting nodes, cycles, dangling ids)."""

    def __init__(self, message: str, cycle: Optional[List[str]] = None):
        self.message = message
        self.cycle = cycle
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        parts = [f"GraphStructureError: {self.message}"]

        if self.cycle:
            parts.append("\n  Cycle detected: " + " -> ".join(self.cycle))

        return "".join(parts)


class NodeError(PackflowException):
    """Base class for errors raised inside a node executor.

    The ``kind`` tag is the error category reported in
    ``ExecutionResult.error`` strings, e.g. ``"ReferenceNotFound: ..."``.
    """

    kind = "NodeError"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self._format_error())

    def _format_error(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidInputTypeError(NodeError):
    """Aggregated input is not the payload variant the node expects."""

    kind = "InvalidInputType"

    @classmethod
    def expected(cls, expected: str, got: object) -> "InvalidInputTypeError":
        """Build the standard ``Expected X data`` message."""
        got_name = "nothing" if got is None else type(got).__name__
        return cls(f"Expected {expected} data, got {got_name}")


class ConfigurationError(NodeError):
    """Node configuration is missing or invalid."""

    kind = "MalformedConfiguration"


class ReferenceNotFoundError(NodeError):
    """A table, column, pack or file named by the node does not exist."""

    kind = "ReferenceNotFound"


class ArchiveIOError(NodeError):
    """Reading or writing an archive failed."""

    kind = "IOFailure"

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message if not path else f"{message} ({path})")
