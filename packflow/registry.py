"""Executor registry: one executor per node kind."""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from packflow.exceptions import ConfigurationError
from packflow.ports import NodeKind


@dataclass(frozen=True)
class ExecutorSpec:
    kind: NodeKind
    func: Callable
    params_model: Type[BaseModel]

    def parse_params(self, configuration: Dict[str, Any]) -> BaseModel:
        """Validate a node configuration into the executor's params model.

        Raises:
            ConfigurationError: If validation fails
        """
        try:
            return self.params_model.model_validate(configuration or {})
        except PydanticValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ConfigurationError("; ".join(problems)) from e


class ExecutorRegistry:
    """Lookup table from NodeKind to its executor and params model."""

    def __init__(self):
        self._executors: Dict[NodeKind, ExecutorSpec] = {}

    def register(self, kind: NodeKind, func: Callable, params_model: Type[BaseModel]) -> Callable:
        """Register ``func`` as the executor for ``kind``.

        Args:
            kind: Node kind served
            func: Callable ``(context, params, data)``
            params_model: Pydantic model validating the node configuration

        Returns:
            The original function
        """
        params = list(inspect.signature(func).parameters)
        if params[:3] != ["context", "params", "data"]:
            raise TypeError(
                f"Executor '{func.__name__}' must accept (context, params, data), got {params}"
            )
        self._executors[NodeKind(kind)] = ExecutorSpec(NodeKind(kind), func, params_model)
        return func

    def get(self, kind: NodeKind) -> ExecutorSpec:
        """Retrieve the executor for ``kind``.

        Raises:
            ValueError: If no executor is registered
        """
        spec = self._executors.get(NodeKind(kind))
        if spec is None:
            available = ", ".join(k.value for k in self._executors) or "none"
            raise ValueError(f"No executor registered for '{kind}'. Available: {available}")
        return spec

    def kinds(self) -> List[NodeKind]:
        return list(self._executors)

    def missing_kinds(self) -> List[NodeKind]:
        return [k for k in NodeKind if k not in self._executors]

    def describe(self, kind: NodeKind) -> Dict[str, Optional[Any]]:
        """Docstring and parameter schema for one kind."""
        spec = self.get(kind)
        return {
            "kind": spec.kind.value,
            "docstring": inspect.getdoc(spec.func),
            "parameters": spec.params_model.model_json_schema(),
        }
