import pytest

from packflow.exceptions import ConfigurationError, InvalidInputTypeError, ReferenceNotFoundError
from packflow.executors.relational import (
    AggregateNestedParams,
    ExtractTableParams,
    FlattenNestedParams,
    GroupByParams,
    IndexTableParams,
    LookupParams,
    aggregate_nested,
    build_index,
    compare,
    extract_table,
    flatten_nested,
    group_by,
    index_table,
    lookup,
)
from packflow.payloads import IndexedTable, NestedTableSelection
from packflow.ports import NodeKind


def column(selection, name):
    return list(selection.tables[0].rows[name])


@pytest.fixture
def mounts_index(make_context, load_selection):
    params = IndexTableParams.model_validate({"indexColumns": "key"})
    return index_table(make_context(NodeKind.INDEX_TABLE), params, load_selection("mounts_tables"))


@pytest.fixture
def nested_riders(make_context, load_selection):
    """Each mount with the land units riding it, as a nested join."""
    land = load_selection("land_units_tables")
    index = build_index(land.tables, ["mount"])
    params = LookupParams(lookup_columns=["key"], join_type="nested")
    return lookup(make_context(NodeKind.LOOKUP), params, (load_selection("mounts_tables"), index))


class TestIndexTable:
    def test_groups_rows_by_key(self, mounts_index):
        assert isinstance(mounts_index, IndexedTable)
        assert list(mounts_index.index) == ["horse", "wolf", "boar", "elephant"]
        assert mounts_index.source_table.base_name == "mounts_tables"

    def test_rows_with_blank_key_are_left_out(self, load_selection):
        indexed = build_index(load_selection("land_units_tables").tables, ["mount"])
        assert list(indexed.index) == ["horse", "wolf", "boar", "elephant"]
        assert list(indexed.index["horse"]["key"]) == ["u1", "u2", "u3"]
        assert len(indexed.source_table.rows) == 7

    def test_composite_key(self, load_selection):
        indexed = build_index(load_selection("land_units_tables").tables, ["category", "mount"])
        assert "cavalry|boar" in indexed.index

    def test_unknown_column(self, load_selection):
        with pytest.raises(ReferenceNotFoundError):
            build_index(load_selection("mounts_tables").tables, ["ghost"])

    def test_requires_columns(self, make_context, load_selection):
        with pytest.raises(ConfigurationError):
            index_table(make_context(NodeKind.INDEX_TABLE), IndexTableParams(), load_selection("mounts_tables"))


class TestLookup:
    """Joins against an index."""

    def test_inner_join_keeps_matching_rows_in_source_order(self, make_context, load_selection, mounts_index):
        params = LookupParams.model_validate({"lookupColumn": "mount", "joinType": "inner"})
        result = lookup(make_context(NodeKind.LOOKUP), params, (load_selection("land_units_tables"), mounts_index))

        table = result.tables[0]
        assert table.name == "db\\land_units_tables_joined_mounts_tables"
        assert column(result, "land_units_tables_key") == ["u1", "u2", "u3", "u4", "u8", "u9", "u10"]
        assert column(result, "mounts_tables_speed") == ["10", "10", "10", "12", "11", "11", "6"]
        assert table.schema.field("land_units_tables_num_mods").field_type.is_integer

    def test_left_join_blanks_unmatched(self, make_context, load_selection, mounts_index):
        params = LookupParams(lookup_columns=["mount"], join_type="left")
        result = lookup(make_context(NodeKind.LOOKUP), params, (load_selection("land_units_tables"), mounts_index))

        assert len(result.tables[0].rows) == 10
        assert column(result, "mounts_tables_speed")[4:7] == ["", "", ""]

    def test_raw_table_selection_is_indexed_on_the_fly(self, make_context, load_selection):
        params = LookupParams.model_validate({"lookupColumn": "mount", "indexJoinColumn": "key"})
        result = lookup(
            make_context(NodeKind.LOOKUP),
            params,
            (load_selection("land_units_tables"), load_selection("mounts_tables")),
        )
        assert len(result.tables[0].rows) == 7

    def test_cross_join(self, make_context, load_selection):
        params = LookupParams(join_type="cross", index_join_columns=["key"])
        result = lookup(
            make_context(NodeKind.LOOKUP),
            params,
            (load_selection("land_units_tables"), load_selection("mounts_tables")),
        )
        assert result.tables[0].name == "db\\land_units_tables_cross_mounts_tables"
        assert len(result.tables[0].rows) == 40

    def test_self_join_prefixes_lookup_side(self, make_context, load_selection, mounts_index):
        params = LookupParams(lookup_columns=["key"])
        result = lookup(make_context(NodeKind.LOOKUP), params, (load_selection("mounts_tables"), mounts_index))

        table = result.tables[0]
        assert table.name == "db\\mounts_tables_joined_mounts_tables"
        assert table.columns == [
            "mounts_tables_key",
            "mounts_tables_speed",
            "lookup_mounts_tables_key",
            "lookup_mounts_tables_speed",
        ]
        assert column(result, "lookup_mounts_tables_speed") == ["10", "12", "11", "6"]
        assert table.schema.field("lookup_mounts_tables_speed").field_type.is_integer

        extracted = extract_table(
            make_context(NodeKind.EXTRACT_TABLE),
            ExtractTableParams(table_prefix="mounts_tables"),
            result,
        )
        assert extracted.tables[0].columns == ["key", "speed"]

    def test_cross_self_join(self, make_context, load_selection):
        params = LookupParams(join_type="cross", index_join_columns=["key"])
        result = lookup(
            make_context(NodeKind.LOOKUP),
            params,
            (load_selection("mounts_tables"), load_selection("mounts_tables")),
        )
        assert len(result.tables[0].rows) == 16
        assert not any(c.endswith(("_x", "_y")) for c in result.tables[0].columns)

    def test_nested_join(self, nested_riders):
        assert isinstance(nested_riders, NestedTableSelection)
        assert [len(r.matches) for r in nested_riders.rows] == [3, 1, 2, 1]
        assert nested_riders.rows[0].source == {"key": "horse", "speed": "10"}

    def test_missing_lookup_column(self, make_context, load_selection, mounts_index):
        params = LookupParams(lookup_columns=["ghost"])
        with pytest.raises(ReferenceNotFoundError):
            lookup(make_context(NodeKind.LOOKUP), params, (load_selection("land_units_tables"), mounts_index))

    def test_missing_index_input(self, make_context, load_selection):
        with pytest.raises(InvalidInputTypeError, match="'index'"):
            lookup(make_context(NodeKind.LOOKUP), LookupParams(), (load_selection("mounts_tables"), None))

    def test_needs_named_pair(self, make_context, load_selection):
        with pytest.raises(InvalidInputTypeError):
            lookup(make_context(NodeKind.LOOKUP), LookupParams(), load_selection("mounts_tables"))


class TestNested:
    def test_flatten_one_row_per_match(self, make_context, nested_riders):
        result = flatten_nested(make_context(NodeKind.FLATTEN_NESTED), FlattenNestedParams(), nested_riders)

        assert result.tables[0].name == "db\\mounts_tables_flattened_land_units_tables"
        assert column(result, "land_units_tables_key") == ["u1", "u2", "u3", "u4", "u8", "u9", "u10"]
        assert column(result, "mounts_tables_key")[:3] == ["horse", "horse", "horse"]

    def test_max_keeps_single_best_match(self, make_context, nested_riders):
        params = AggregateNestedParams.model_validate({"aggregateColumn": "morale", "aggregateType": "max"})
        result = aggregate_nested(make_context(NodeKind.AGGREGATE_NESTED), params, nested_riders)
        assert [r.matches[0]["key"] for r in result.rows] == ["u3", "u4", "u9", "u10"]

    def test_sum_adds_source_column(self, make_context, nested_riders):
        params = AggregateNestedParams(aggregate_column="num_mods", aggregate_type="sum")
        result = aggregate_nested(make_context(NodeKind.AGGREGATE_NESTED), params, nested_riders)

        assert [r.source["num_mods_sum"] for r in result.rows] == ["240", "40", "140", "1"]
        assert all(r.matches == [] for r in result.rows)
        assert result.source_columns == ["key", "speed", "num_mods_sum"]

    def test_filter_drops_rows_without_matches(self, make_context, nested_riders):
        params = AggregateNestedParams(
            aggregate_column="key",
            aggregate_type="count",
            filter_column="category",
            filter_operator="equals",
            filter_value="cavalry",
        )
        result = aggregate_nested(make_context(NodeKind.AGGREGATE_NESTED), params, nested_riders)
        assert [(r.source["key"], r.source["key_count"]) for r in result.rows] == [
            ("horse", "1"),
            ("wolf", "1"),
            ("boar", "1"),
        ]

    def test_sum_requires_column(self, make_context, nested_riders):
        with pytest.raises(ConfigurationError):
            aggregate_nested(
                make_context(NodeKind.AGGREGATE_NESTED), AggregateNestedParams(aggregate_type="sum"), nested_riders
            )


class TestExtractTable:
    def test_recovers_prefixed_table(self, make_context, load_selection, mounts_index):
        joined = lookup(
            make_context(NodeKind.LOOKUP),
            LookupParams(lookup_columns=["mount"]),
            (load_selection("land_units_tables"), mounts_index),
        )
        params = ExtractTableParams.model_validate({"tablePrefix": "mounts_tables"})
        result = extract_table(make_context(NodeKind.EXTRACT_TABLE), params, joined)

        table = result.tables[0]
        assert table.name == "db\\mounts_tables"
        assert table.columns == ["key", "speed"]
        assert table.schema.version == 1
        assert len(table.rows) == 7

    def test_unknown_prefix(self, make_context, load_selection):
        with pytest.raises(ReferenceNotFoundError):
            extract_table(
                make_context(NodeKind.EXTRACT_TABLE),
                ExtractTableParams(table_prefix="ghost_"),
                load_selection("mounts_tables"),
            )


class TestGroupBy:
    def test_aggregations_with_condition_and_default(self, make_context, load_selection):
        params = GroupByParams.model_validate(
            {
                "groupByColumns": "category",
                "aggregations": [
                    {"sourceColumn": "num_mods", "operation": "max"},
                    {"sourceColumn": "morale", "operation": "avg"},
                    {
                        "sourceColumn": "key",
                        "operation": "count",
                        "outputName": "veterans",
                        "defaultValue": "none",
                        "condition": {"column": "morale", "operator": "greaterThan", "value": 60},
                    },
                    {"sourceColumn": "key", "operation": "first"},
                ],
            }
        )
        result = group_by(make_context(NodeKind.GROUP_BY), params, load_selection("land_units_tables"))

        table = result.tables[0]
        assert table.name == "db\\land_units_tables_grouped"
        assert table.columns == ["category", "num_mods_max", "morale_avg", "veterans", "key_first"]
        assert table.records()[0] == {
            "category": "infantry",
            "num_mods_max": "100",
            "morale_avg": "50",
            "veterans": "none",
            "key_first": "u1",
        }
        assert table.records()[1]["veterans"] == "2"
        assert table.schema.field("category").is_key
        assert table.schema.field("veterans").field_type.is_integer

    def test_unknown_condition_column(self, make_context, load_selection):
        params = GroupByParams(
            group_by_columns=["category"],
            aggregations=[{"source_column": "morale", "condition": {"column": "ghost"}}],
        )
        with pytest.raises(ReferenceNotFoundError):
            group_by(make_context(NodeKind.GROUP_BY), params, load_selection("land_units_tables"))

    def test_requires_aggregations(self, make_context, load_selection):
        with pytest.raises(ConfigurationError):
            group_by(
                make_context(NodeKind.GROUP_BY),
                GroupByParams(group_by_columns=["category"]),
                load_selection("land_units_tables"),
            )


@pytest.mark.parametrize(
    "cell, operator, value, expected",
    [
        ("10", "greaterThan", "9", True),
        ("abc", "lessThan", "abd", True),
        ("5", "equals", "5.0", True),
        ("x", "notEquals", "x", False),
    ],
)
def test_compare(cell, operator, value, expected):
    assert compare(cell, operator, value) is expected
