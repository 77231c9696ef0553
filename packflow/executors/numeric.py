"""Numeric change pipeline: formula adjustment, clamps and merging changes."""

import ast
import math
import operator
from typing import Callable, List, Union

from pydantic import Field, field_validator, model_validator

from packflow.exceptions import ConfigurationError, InvalidInputTypeError
from packflow.executors.common import NodeParams, expect, format_number, parse_number
from packflow.node import NodeContext
from packflow.payloads import ChangedColumnSelection, ColumnSelection, ColumnSlice

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

VARIABLE = "x"


class Formula:
    """Arithmetic expression over ``x``, parsed once and evaluated per cell.

    Only numbers, ``x``, ``+ - * / %``, ``^``/``**`` and parentheses are
    accepted; anything else is rejected when the formula is parsed.

    Example:
        >>> Formula("x * 1.5 + 2")(10)
        17.0
    """

    def __init__(self, text: str):
        self.text = (text or "").strip()
        if not self.text:
            raise ConfigurationError(
                "No formula provided. Enter a mathematical expression using x as the input variable."
            )
        if VARIABLE not in self.text:
            raise ConfigurationError("Formula must contain variable x representing the input value.")
        try:
            self._tree = ast.parse(self.text.replace("^", "**"), mode="eval")
        except SyntaxError as e:
            raise ConfigurationError(f"Invalid formula '{self.text}': {e.msg}") from e
        self._check(self._tree.body)
        # Surface evaluation problems (e.g. a constant division by zero) up front
        try:
            self(1.0)
        except ArithmeticError as e:
            raise ConfigurationError(f"Invalid formula '{self.text}': {e}") from e

    def _check(self, node: ast.AST) -> None:
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            self._check(node.left)
            self._check(node.right)
        elif isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            self._check(node.operand)
        elif isinstance(node, ast.Name) and node.id == VARIABLE:
            return
        elif (
            isinstance(node, ast.Constant)
            and isinstance(node.value, (int, float))
            and not isinstance(node.value, bool)
        ):
            return
        else:
            raise ConfigurationError(
                f"Invalid formula '{self.text}': unsupported element {type(node).__name__}"
            )

    def _eval(self, node: ast.AST, x: float) -> float:
        if isinstance(node, ast.BinOp):
            return _BINARY_OPS[type(node.op)](self._eval(node.left, x), self._eval(node.right, x))
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, x))
        if isinstance(node, ast.Name):
            return x
        # float constants keep ** bounded: huge powers overflow instead of growing ints
        return float(node.value)

    def __call__(self, x: float) -> float:
        result = self._eval(self._tree.body, float(x))
        if isinstance(result, complex) or not math.isfinite(result):
            raise ArithmeticError("Formula evaluation resulted in invalid number")
        return float(result)


def _adjust_slice(column: ColumnSlice, fn: Callable[[float], float], context: NodeContext) -> ColumnSlice:
    adjusted = column.copy()
    rows = adjusted.table.rows
    for name in adjusted.selected_columns:
        cells = []
        for cell in rows[name]:
            number = parse_number(cell)
            if number is None:
                cells.append(cell)
                continue
            try:
                cells.append(format_number(fn(number)))
            except ArithmeticError as e:
                context.log.warning("Formula failed for value", value=number, error=str(e))
                cells.append(cell)
        rows[name] = cells
    return adjusted


def apply_to_selection(
    context: NodeContext,
    data: Union[ColumnSelection, ChangedColumnSelection],
    fn: Callable[[float], float],
    applied_formula: str,
) -> ChangedColumnSelection:
    """Run ``fn`` over every numeric cell of the selected columns.

    A fresh ColumnSelection becomes the original data; an existing change
    set keeps its original data and is adjusted further.
    """
    if isinstance(data, ColumnSelection):
        source, original = data.columns, [c.copy() for c in data.columns]
    else:
        source, original = data.adjusted, [c.copy() for c in data.original]
    adjusted = [_adjust_slice(c, fn, context) for c in source]
    return ChangedColumnSelection(adjusted=adjusted, original=original, applied_formula=applied_formula)


# -------------------------------------------------------------------------
# 1. Numeric adjustment
# -------------------------------------------------------------------------


class NumericAdjustmentParams(NodeParams):
    formula: str = Field("", description="Expression in x, e.g. 'x * 1.5' or '(x + 2)^2'")

    @model_validator(mode="before")
    @classmethod
    def _text_value(cls, data):
        if isinstance(data, dict) and "formula" not in data and "textValue" in data:
            return {**data, "formula": data["textValue"]}
        return data


def numeric_adjustment(context: NodeContext, params: NumericAdjustmentParams, data) -> ChangedColumnSelection:
    selection = expect(data, ColumnSelection, ChangedColumnSelection)
    formula = Formula(params.formula)
    result = apply_to_selection(context, selection, formula, formula.text)
    context.log.info("Applied formula", formula=formula.text, tables=len(result.adjusted))
    return result


# -------------------------------------------------------------------------
# 2. Clamp and ceiling
# -------------------------------------------------------------------------


class MathMaxParams(NodeParams):
    value: float = Field(..., description="Lower bound applied as max(x, value)")

    @model_validator(mode="before")
    @classmethod
    def _text_value(cls, data):
        if isinstance(data, dict) and "value" not in data and "textValue" in data:
            return {**data, "value": data["textValue"]}
        return data

    @field_validator("value", mode="before")
    @classmethod
    def _number(cls, value):
        if isinstance(value, str):
            value = value.strip()
        return value


def math_max(context: NodeContext, params: MathMaxParams, data) -> ChangedColumnSelection:
    selection = expect(data, ColumnSelection, ChangedColumnSelection)
    floor = params.value
    return apply_to_selection(
        context, selection, lambda x: max(x, floor), f"max(x, {format_number(float(floor))})"
    )


class MathCeilParams(NodeParams):
    pass


def math_ceil(context: NodeContext, params: MathCeilParams, data) -> ChangedColumnSelection:
    selection = expect(data, ColumnSelection, ChangedColumnSelection)
    return apply_to_selection(context, selection, lambda x: float(math.ceil(x)), "ceil(x)")


# -------------------------------------------------------------------------
# 3. Merge changes
# -------------------------------------------------------------------------


class MergeChangesParams(NodeParams):
    pass


def _overwrite(target: ColumnSlice, update: ColumnSlice) -> None:
    rows = target.table.rows
    incoming = update.table.rows
    count = min(len(rows), len(incoming))
    for name in update.selected_columns:
        if name not in incoming.columns:
            continue
        if name not in rows.columns:
            rows[name] = ""
        if count:
            rows.iloc[:count, rows.columns.get_loc(name)] = incoming[name].iloc[:count].values
        if name not in target.selected_columns:
            target.selected_columns.append(name)


def merge_changes(context: NodeContext, params: MergeChangesParams, data) -> ChangedColumnSelection:
    """
    Folds several change sets into one. Tables that match an earlier table
    (same name, file and source pack) have the later input's selected
    columns written over them row by row; other tables are appended.
    """
    inputs: List = data if isinstance(data, list) else ([] if data is None else [data])
    if not inputs:
        raise InvalidInputTypeError(
            "No inputs to merge. Connect at least one ChangedColumnSelection node."
        )
    for i, item in enumerate(inputs):
        if not isinstance(item, ChangedColumnSelection):
            raise InvalidInputTypeError(
                f"Invalid input at index {i}: Expected ChangedColumnSelection data, "
                f"got {type(item).__name__}"
            )

    merged = inputs[0].copy()
    for change in inputs[1:]:
        for column in change.adjusted:
            existing = next((c for c in merged.adjusted if c.same_table(column)), None)
            if existing is None:
                merged.adjusted.append(column.copy())
                continue
            _overwrite(existing, column)
        for column in change.original:
            if not any(c.same_table(column) for c in merged.original):
                merged.original.append(column.copy())

    merged.applied_formula = f"Merged {len(inputs)} inputs"
    context.log.info("Merged change sets", inputs=len(inputs), tables=len(merged.adjusted))
    return merged
