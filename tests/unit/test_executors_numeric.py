import pytest

from packflow.exceptions import ConfigurationError, InvalidInputTypeError
from packflow.executors.numeric import (
    Formula,
    MathCeilParams,
    MathMaxParams,
    MergeChangesParams,
    NumericAdjustmentParams,
    math_ceil,
    math_max,
    merge_changes,
    numeric_adjustment,
)
from packflow.executors.selection import ColumnSelectionParams, column_selection
from packflow.payloads import Text
from packflow.ports import NodeKind


@pytest.fixture
def select_columns(make_context, load_selection):
    """ColumnSelection over one table, as the columnselection node builds it."""

    def _select(table, *columns):
        params = ColumnSelectionParams(columns=list(columns))
        return column_selection(make_context(NodeKind.COLUMN_SELECTION), params, load_selection(table))

    return _select


@pytest.fixture
def adjust(make_context):
    def _adjust(data, formula):
        params = NumericAdjustmentParams(formula=formula)
        return numeric_adjustment(make_context(NodeKind.NUMERIC_ADJUSTMENT), params, data)

    return _adjust


def cells(slice_, column):
    return list(slice_.table.rows[column])


class TestFormula:
    def test_evaluates(self):
        assert Formula("x * 1.5 + 2")(10) == 17.0
        assert Formula("(x + 2)^2")(1) == 9.0
        assert Formula("-x % 4")(3) == 1.0

    @pytest.mark.parametrize(
        "text, message",
        [
            ("", "No formula provided"),
            ("2 + 2", "must contain variable x"),
            ("x +", "Invalid formula"),
            ("x + abs(x)", "unsupported element Call"),
            ("x + y", "unsupported element Name"),
            ("x / 0", "Invalid formula"),
            ("x + 'a'", "unsupported element Constant"),
        ],
    )
    def test_rejected(self, text, message):
        with pytest.raises(ConfigurationError, match=message):
            Formula(text)

    def test_overflow_is_arithmetic_error(self):
        with pytest.raises(ArithmeticError):
            Formula("x ** 400")(10)

    @pytest.mark.parametrize("text", ["x + 9 ** 9 ** 9", "x * 10 ^ 10 ^ 10"])
    def test_huge_constant_power_rejected_when_parsed(self, text):
        with pytest.raises(ConfigurationError, match="Invalid formula"):
            Formula(text)

    def test_large_cell_raised_to_itself_overflows(self):
        with pytest.raises(ArithmeticError):
            Formula("x ^ x")(10 ** 6)


class TestNumericAdjustment:
    """Formula application over selected columns."""

    def test_adjusted_and_original(self, select_columns, adjust):
        result = adjust(select_columns("mounts_tables", "speed"), "x * 2")

        assert cells(result.adjusted[0], "speed") == ["20", "24", "22", "12"]
        assert cells(result.original[0], "speed") == ["10", "12", "11", "6"]
        assert result.applied_formula == "x * 2"

    def test_non_numeric_cells_untouched(self, select_columns, adjust):
        result = adjust(select_columns("mounts_tables", "key"), "x * 2")
        assert cells(result.adjusted[0], "key") == ["horse", "wolf", "boar", "elephant"]

    def test_failed_cells_keep_their_value(self, select_columns, adjust):
        result = adjust(select_columns("mounts_tables", "speed"), "x ** 400")
        assert cells(result.adjusted[0], "speed") == ["10", "12", "11", "6"]

    def test_text_value_alias(self):
        assert NumericAdjustmentParams.model_validate({"textValue": "x + 1"}).formula == "x + 1"

    def test_chained_changes_keep_first_original(self, make_context, select_columns, adjust):
        lowered = adjust(select_columns("mounts_tables", "speed"), "x - 5")
        params = MathMaxParams.model_validate({"textValue": " 6 "})
        result = math_max(make_context(NodeKind.MATH_MAX), params, lowered)

        assert cells(result.adjusted[0], "speed") == ["6", "7", "6", "6"]
        assert cells(result.original[0], "speed") == ["10", "12", "11", "6"]
        assert result.applied_formula == "max(x, 6)"

    def test_ceil(self, make_context, select_columns, adjust):
        quartered = adjust(select_columns("mounts_tables", "speed"), "x / 4")
        result = math_ceil(make_context(NodeKind.MATH_CEIL), MathCeilParams(), quartered)
        assert cells(result.adjusted[0], "speed") == ["3", "3", "3", "2"]
        assert result.applied_formula == "ceil(x)"

    def test_wrong_input(self, make_context):
        with pytest.raises(InvalidInputTypeError):
            numeric_adjustment(
                make_context(NodeKind.NUMERIC_ADJUSTMENT), NumericAdjustmentParams(formula="x"), Text("1")
            )


class TestMergeChanges:
    def test_same_table_columns_overlaid(self, make_context, select_columns, adjust):
        mods = adjust(select_columns("land_units_tables", "num_mods"), "x * 2")
        morale = adjust(select_columns("land_units_tables", "morale"), "x + 1")
        result = merge_changes(make_context(NodeKind.MERGE_CHANGES), MergeChangesParams(), [mods, morale])

        assert len(result.adjusted) == 1
        merged = result.adjusted[0]
        assert merged.selected_columns == ["num_mods", "morale"]
        assert cells(merged, "num_mods")[:2] == ["200", "160"]
        assert cells(merged, "morale")[:2] == ["51", "46"]
        assert result.applied_formula == "Merged 2 inputs"
        # inputs are not modified
        assert cells(mods.adjusted[0], "morale")[:2] == ["50", "45"]

    def test_other_tables_appended(self, make_context, select_columns, adjust):
        speed = adjust(select_columns("mounts_tables", "speed"), "x * 2")
        mods = adjust(select_columns("land_units_tables", "num_mods"), "x * 2")
        result = merge_changes(make_context(NodeKind.MERGE_CHANGES), MergeChangesParams(), [speed, mods])

        assert [c.table.base_name for c in result.adjusted] == ["mounts_tables", "land_units_tables"]
        assert [c.table.base_name for c in result.original] == ["mounts_tables", "land_units_tables"]

    def test_single_input_is_copied(self, make_context, select_columns, adjust):
        speed = adjust(select_columns("mounts_tables", "speed"), "x * 2")
        result = merge_changes(make_context(NodeKind.MERGE_CHANGES), MergeChangesParams(), speed)
        assert result is not speed
        assert result.applied_formula == "Merged 1 inputs"

    def test_bad_element(self, make_context, select_columns, adjust):
        speed = adjust(select_columns("mounts_tables", "speed"), "x * 2")
        with pytest.raises(InvalidInputTypeError) as exc_info:
            merge_changes(make_context(NodeKind.MERGE_CHANGES), MergeChangesParams(), [speed, Text("x")])
        assert "Invalid input at index 1: Expected ChangedColumnSelection data, got Text" in str(exc_info.value)

    @pytest.mark.parametrize("data", [[], None])
    def test_no_inputs(self, make_context, data):
        with pytest.raises(InvalidInputTypeError, match="No inputs to merge"):
            merge_changes(make_context(NodeKind.MERGE_CHANGES), MergeChangesParams(), data)
