"""Text nodes: wrap, append, join and format grouped text."""

from typing import Callable, Literal

from pydantic import Field, model_validator

from packflow.exceptions import ConfigurationError
from packflow.executors.common import NodeParams, expect, process_escapes
from packflow.node import NodeContext
from packflow.payloads import GroupedText, Text, TextLines

GroupedTarget = Literal["Text", "Text Lines"]


def map_text(data, fn: Callable[[str], str], grouped_target: str = "Text"):
    """Apply ``fn`` to the text, each line, or one side of grouped text.

    The payload type is preserved. For grouped text ``grouped_target``
    picks the keys ("Text") or every grouped value ("Text Lines").
    """
    data = expect(data, Text, TextLines, GroupedText)
    if isinstance(data, Text):
        return Text(text=fn(data.text))
    if isinstance(data, TextLines):
        return TextLines(lines=[fn(line) for line in data.lines])
    if grouped_target == "Text":
        return GroupedText(keys=[fn(k) for k in data.keys], values=[list(v) for v in data.values])
    return GroupedText(keys=list(data.keys), values=[[fn(v) for v in group] for group in data.values])


# -------------------------------------------------------------------------
# 1. Surround / append
# -------------------------------------------------------------------------


class TextSurroundParams(NodeParams):
    surround_text: str = Field("", description="'prefix|suffix', or one part used on both sides")
    grouped_text_selection: GroupedTarget = "Text"

    @model_validator(mode="before")
    @classmethod
    def _text_value(cls, data):
        if isinstance(data, dict) and "surroundText" not in data and "surround_text" not in data:
            if "textValue" in data:
                return {**data, "surround_text": data["textValue"]}
        return data

    def parts(self):
        prefix, sep, suffix = self.surround_text.partition("|")
        if not sep:
            suffix = prefix
        return process_escapes(prefix), process_escapes(suffix)


def text_surround(context: NodeContext, params: TextSurroundParams, data):
    prefix, suffix = params.parts()
    return map_text(data, lambda s: f"{prefix}{s}{suffix}", params.grouped_text_selection)


class AppendTextParams(NodeParams):
    before_text: str = ""
    after_text: str = ""
    grouped_text_selection: GroupedTarget = "Text"


def append_text(context: NodeContext, params: AppendTextParams, data):
    before, after = process_escapes(params.before_text), process_escapes(params.after_text)
    return map_text(data, lambda s: f"{before}{s}{after}", params.grouped_text_selection)


# -------------------------------------------------------------------------
# 2. Join
# -------------------------------------------------------------------------


class TextJoinParams(NodeParams):
    separator: str = Field("\\n", description="Separator; \\n, \\t and \\r are unescaped")

    @model_validator(mode="before")
    @classmethod
    def _text_value(cls, data):
        if isinstance(data, dict) and "separator" not in data and data.get("textValue"):
            return {**data, "separator": data["textValue"]}
        return data


def text_join(context: NodeContext, params: TextJoinParams, data) -> Text:
    """Join lines, grouped keys, or (with no keys) the flattened grouped values."""
    data = expect(data, TextLines, GroupedText)
    separator = process_escapes(params.separator or "\\n")
    if isinstance(data, TextLines):
        lines = data.lines
    elif data.keys:
        lines = data.keys
    else:
        lines = [v for group in data.values for v in group]
    return Text(text=separator.join(lines))


# -------------------------------------------------------------------------
# 3. Grouped columns to text
# -------------------------------------------------------------------------


class GroupedColumnsToTextParams(NodeParams):
    pattern: str = Field("{0}: {1}", description="{0} is the key, {1} the joined values")
    join_separator: str = "\\n"


def grouped_columns_to_text(context: NodeContext, params: GroupedColumnsToTextParams, data) -> Text:
    grouped = expect(data, GroupedText)
    if len(grouped.keys) != len(grouped.values):
        raise ConfigurationError(
            f"Mismatched keys and values arrays: {len(grouped.keys)} keys, "
            f"{len(grouped.values)} value arrays"
        )
    pattern = params.pattern or "{0}: {1}"
    lines = [
        pattern.replace("{0}", key).replace("{1}", ", ".join(values))
        for key, values in zip(grouped.keys, grouped.values)
    ]
    return Text(text=process_escapes(params.join_separator or "\\n").join(lines))
