import pytest

from packflow.exceptions import ConfigurationError, ReferenceNotFoundError
from packflow.executors import register_standard_executors
from packflow.executors.generation import (
    AddNewColumnParams,
    DropRow,
    GenerateRowsParams,
    Transformation,
    add_new_column,
    apply_step,
    generate_rows,
)
from packflow.payloads import TableSelection
from packflow.ports import NodeKind


def step(**kwargs):
    return Transformation.model_validate(kwargs)


def variants_config(*transformations, **table):
    output = {"handleId": "variants", "existingTableName": "db\\unit_variants_tables"}
    output.update(table)
    return {"transformations": list(transformations), "outputTables": [output]}


class TestApplyStep:
    """Single transformation steps."""

    def test_prefix_and_suffix(self):
        assert apply_step(step(transformationType="prefix", prefix="pfx_"), "u1") == "pfx_u1"
        assert apply_step(step(transformationType="suffix", suffix="_v2"), "u1") == "u1_v2"

    @pytest.mark.parametrize(
        "kind, number, value, expected",
        [
            ("add", 3, "12 gold", "15"),
            ("subtract", 2.5, "10", "7.5"),
            ("multiply", 2, "21", "42"),
            ("divide", 4, "10", "2.5"),
            ("divide", 0, "10", "0"),
            ("add", 1, "none", "0"),
        ],
    )
    def test_numeric(self, kind, number, value, expected):
        assert apply_step(step(transformationType=kind, numericValue=number), value) == expected

    def test_rewrites(self):
        assert apply_step(step(transformationType="rename_whole", matchValue="u1", replaceValue="x"), "u1") == "x"
        assert apply_step(step(transformationType="rename_whole", matchValue="u1", replaceValue="x"), "u10") == "u10"
        assert (
            apply_step(step(transformationType="rename_substring", findSubstring="u", replaceValue="unit"), "u1u")
            == "unit1unit"
        )
        assert (
            apply_step(step(transformationType="replace_substring_whole", find="cav", replace="mounted"), "cavalry")
            == "mounted"
        )
        assert (
            apply_step(
                step(transformationType="regex_replace", regexPattern=r"u(\d+)", regexReplacement=r"unit_\1"),
                "u10",
            )
            == "unit_10"
        )

    def test_invalid_regex(self):
        with pytest.raises(ConfigurationError, match="Invalid regex"):
            apply_step(step(transformationType="regex_replace", regexPattern="(", regexReplacement=""), "u1")

    def test_filters_raise_drop_row(self):
        with pytest.raises(DropRow):
            apply_step(step(transformationType="filterequal", filterValue="cavalry"), "cavalry")
        with pytest.raises(DropRow):
            apply_step(step(transformationType="filternotequal", filterValue="cavalry"), "infantry")
        assert apply_step(step(transformationType="filterequal", filterValue="cavalry"), "infantry") == "infantry"

    def test_counter_start_defaults(self):
        assert step(transformationType="counter", startNumber="").start_number == 10000


class TestGenerateRows:
    def test_rows_built_from_registry_layout(self, make_context, load_selection):
        params = GenerateRowsParams.model_validate(
            variants_config(
                {"sourceColumn": "category", "transformationType": "filternotequal", "filterValue": "cavalry"},
                {
                    "sourceColumn": "key",
                    "transformationType": "prefix",
                    "prefix": "pfx_",
                    "outputColumnName": "variant_key",
                },
                {"sourceColumn": "key", "transformationType": "none", "outputColumnName": "unit"},
                {"sourceColumn": "id", "transformationType": "counter", "outputColumnName": "id"},
                staticValues={"enabled": "true"},
            )
        )
        result = generate_rows(make_context(NodeKind.GENERATE_ROWS), params, load_selection("land_units_tables"))

        table = result.multi_outputs["variants"].tables[0]
        assert table.file_name == "db\\unit_variants_tables\\variants"
        assert table.columns == ["variant_key", "unit", "id", "enabled"]
        assert table.records() == [
            {"variant_key": "pfx_u3", "unit": "u3", "id": "10000", "enabled": "true"},
            {"variant_key": "pfx_u4", "unit": "u4", "id": "10001", "enabled": "true"},
            {"variant_key": "pfx_u9", "unit": "u9", "id": "10002", "enabled": "true"},
        ]
        assert result.data.row_count == 3

    @pytest.mark.parametrize(
        "kind, value",
        [("filternotequal", "x"), ("filterequal", "")],
    )
    def test_filter_on_absent_column_keeps_rows(self, make_context, load_selection, kind, value):
        params = GenerateRowsParams.model_validate(
            variants_config(
                {"sourceColumn": "not_a_column", "transformationType": kind, "filterValue": value},
                {"sourceColumn": "key", "transformationType": "none", "outputColumnName": "unit"},
            )
        )
        result = generate_rows(make_context(NodeKind.GENERATE_ROWS), params, load_selection("land_units_tables"))

        assert result.data.row_count == 10

    def test_steps_chain_on_earlier_outputs(self, make_context, load_selection):
        params = GenerateRowsParams.model_validate(
            variants_config(
                {"sourceColumn": "key", "transformationType": "prefix", "prefix": "pfx_"},
                {
                    "sourceColumn": "key",
                    "transformationType": "suffix",
                    "suffix": "_v",
                    "outputColumnName": "variant_key",
                },
            )
        )
        result = generate_rows(make_context(NodeKind.GENERATE_ROWS), params, load_selection("land_units_tables"))

        first = result.multi_outputs["variants"].tables[0].records()[0]
        assert first["variant_key"] == "pfx_u1_v"
        assert first["id"] == "0"
        assert first["enabled"] == "false"

    def test_steps_address_one_output_table(self, make_context, load_selection):
        config = {
            "transformations": [
                {"sourceColumn": "key", "outputColumnName": "variant_key", "targetTableHandleId": "a"},
                {
                    "sourceColumn": "key",
                    "transformationType": "suffix",
                    "suffix": "_b",
                    "outputColumnName": "variant_key",
                    "targetTableHandleId": "b",
                },
            ],
            "outputTables": [
                {"handleId": "a", "existingTableName": "unit_variants_tables"},
                {"handleId": "b", "name": "second", "existingTableName": "unit_variants_tables"},
            ],
        }
        result = generate_rows(
            make_context(NodeKind.GENERATE_ROWS),
            GenerateRowsParams.model_validate(config),
            load_selection("mounts_tables"),
        )

        a, b = result.multi_outputs["a"].tables[0], result.multi_outputs["b"].tables[0]
        assert list(a.rows["variant_key"]) == ["horse", "wolf", "boar", "elephant"]
        assert list(b.rows["variant_key"]) == ["horse_b", "wolf_b", "boar_b", "elephant_b"]
        assert b.file_name == "db\\unit_variants_tables\\second"
        assert len(result.data.tables) == 2

    def test_empty_input_gives_empty_outputs(self, make_context):
        params = GenerateRowsParams.model_validate(variants_config())
        result = generate_rows(make_context(NodeKind.GENERATE_ROWS), params, TableSelection())
        assert result.multi_outputs["variants"].tables == []

    def test_unknown_output_table(self, make_context, load_selection):
        params = GenerateRowsParams.model_validate(variants_config(existingTableName="nope"))
        with pytest.raises(ReferenceNotFoundError, match="'nope'"):
            generate_rows(make_context(NodeKind.GENERATE_ROWS), params, load_selection("mounts_tables"))

    def test_at_most_four_output_tables(self):
        spec = register_standard_executors().get(NodeKind.GENERATE_ROWS)
        tables = [{"handleId": f"t{i}", "existingTableName": "mounts_tables"} for i in range(5)]
        with pytest.raises(ConfigurationError, match="at most 4"):
            spec.parse_params({"outputTables": tables})

    def test_requires_output_tables(self, make_context, load_selection):
        with pytest.raises(ConfigurationError):
            generate_rows(make_context(NodeKind.GENERATE_ROWS), GenerateRowsParams(), load_selection("mounts_tables"))


class TestAddNewColumn:
    def test_appends_columns(self, make_context, load_selection):
        params = AddNewColumnParams.model_validate(
            {
                "transformations": [
                    {
                        "sourceColumn": "speed",
                        "transformationType": "multiply",
                        "numericValue": 2,
                        "outputColumnName": "double_speed",
                    },
                    {"sourceColumn": "key", "transformationType": "filterequal", "filterValue": "wolf"},
                ]
            }
        )
        result = add_new_column(make_context(NodeKind.ADD_NEW_COLUMN), params, load_selection("mounts_tables"))

        table = result.tables[0]
        assert table.columns == ["key", "speed", "double_speed"]
        assert list(table.rows["double_speed"]) == ["20", "22", "12"]
        assert table.schema.field("speed").field_type.is_integer
        assert table.schema.field("double_speed").field_type.value == "StringU8"

    def test_filter_on_absent_column_keeps_rows(self, make_context, load_selection):
        params = AddNewColumnParams.model_validate(
            {
                "transformations": [
                    {"sourceColumn": "ghost", "transformationType": "filternotequal", "filterValue": "x"},
                    {"sourceColumn": "key", "transformationType": "suffix", "suffix": "_2", "outputColumnName": "copy"},
                ]
            }
        )
        result = add_new_column(make_context(NodeKind.ADD_NEW_COLUMN), params, load_selection("mounts_tables"))

        assert list(result.tables[0].rows["copy"]) == ["horse_2", "wolf_2", "boar_2", "elephant_2"]

    def test_requires_transformations(self, make_context, load_selection):
        with pytest.raises(ConfigurationError):
            add_new_column(make_context(NodeKind.ADD_NEW_COLUMN), AddNewColumnParams(), load_selection("mounts_tables"))
