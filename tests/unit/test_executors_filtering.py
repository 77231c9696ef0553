import pytest

from packflow.exceptions import ConfigurationError
from packflow.executors.filtering import (
    DeduplicateParams,
    FilterParams,
    MultiFilterParams,
    deduplicate,
    filter_rows,
    multi_filter,
    split_handle,
)
from packflow.payloads import PackFile, PackFiles
from packflow.ports import NodeKind


def keys(selection):
    return [k for t in selection.tables for k in t.rows["key"]]


class TestFilter:
    """Predicate filtering with an else branch."""

    def test_match_and_else_partition_rows(self, make_context, load_selection):
        params = FilterParams.model_validate({"column": "category", "value": "Cavalry"})
        result = filter_rows(make_context(), params, load_selection("land_units_tables"))

        assert keys(result.data) == ["u3", "u4", "u9"]
        assert keys(result.else_data) == ["u1", "u2", "u5", "u6", "u7", "u8", "u10"]

    def test_negate_alias(self, make_context, load_selection):
        params = FilterParams.model_validate(
            {"filters": [{"column": "category", "value": "cavalry", "not": True}]}
        )
        result = filter_rows(make_context(), params, load_selection("land_units_tables"))
        assert "u3" not in keys(result.data)
        assert keys(result.else_data) == ["u3", "u4", "u9"]

    def test_operators_combine_left_to_right(self, make_context, load_selection):
        """(category == infantry OR category == missile) AND mount == '' ."""
        params = FilterParams.model_validate(
            {
                "filters": [
                    {"column": "category", "value": "infantry", "operator": "or"},
                    {"column": "category", "value": "missile", "operator": "AND"},
                    {"column": "mount", "value": ""},
                ]
            }
        )
        result = filter_rows(make_context(), params, load_selection("land_units_tables"))
        assert keys(result.data) == ["u5", "u6"]

    def test_missing_column_matches_everything(self, make_context, load_selection):
        params = FilterParams(filters=[{"column": "ghost", "value": "x"}])
        result = filter_rows(make_context(), params, load_selection("land_units_tables"))
        assert len(keys(result.data)) == 10
        assert keys(result.else_data) == []

    def test_no_predicates_passes_through(self, make_context, load_selection):
        selection = load_selection("land_units_tables")
        result = filter_rows(make_context(), FilterParams(), selection)
        assert result.data is selection
        assert result.else_data.tables == []

    def test_per_table_partition_with_several_tables(self, make_context, load_selection):
        packs = PackFiles(
            files=[
                PackFile(name="db.pack", path="data/db.pack", loaded=True),
                PackFile(name="my_mod.pack", path="mods/my_mod.pack", loaded=True),
            ]
        )
        selection = load_selection("land_units_tables", packs=packs)
        params = FilterParams(filters=[{"column": "category", "value": "infantry"}])
        result = filter_rows(make_context(), params, selection)

        for source, match, rest in zip(selection.tables, result.data.tables, result.else_data.tables):
            assert len(match.rows) + len(rest.rows) == len(source.rows)
        assert keys(result.data) == ["u1", "u2", "u8", "m1"]


class TestMultiFilter:
    def test_rows_routed_to_first_matching_split(self, make_context, load_selection):
        params = MultiFilterParams.model_validate(
            {
                "selectedColumn": "category",
                "splitValues": [
                    {"value": "cavalry", "enabled": True},
                    {"value": "Missile", "enabled": True},
                    {"value": "monster", "enabled": False},
                ],
            }
        )
        result = multi_filter(make_context(NodeKind.MULTI_FILTER), params, load_selection("land_units_tables"))

        assert set(result.multi_outputs) == {"output-cavalry", "output-Missile"}
        assert keys(result.multi_outputs["output-cavalry"]) == ["u3", "u4", "u9"]
        assert keys(result.multi_outputs["output-Missile"]) == ["u5", "u6"]
        assert keys(result.data) == ["u3", "u4", "u5", "u6", "u9"]

    def test_requires_column_and_splits(self, make_context, load_selection):
        with pytest.raises(ConfigurationError):
            multi_filter(
                make_context(NodeKind.MULTI_FILTER),
                MultiFilterParams(column="category"),
                load_selection("land_units_tables"),
            )

    def test_split_handle_sanitizes(self):
        assert split_handle("a b/c") == "output-a_b_c"


class TestDeduplicate:
    def test_first_occurrence_wins(self, make_context, load_selection):
        params = DeduplicateParams.model_validate({"dedupeByColumns": ["category"]})
        result = deduplicate(make_context(NodeKind.DEDUPLICATE), params, load_selection("land_units_tables"))
        assert keys(result) == ["u1", "u3", "u5", "u7", "u10"]

    def test_across_tables(self, make_context, load_selection):
        packs = PackFiles(
            files=[
                PackFile(name="db.pack", path="data/db.pack", loaded=True),
                PackFile(name="my_mod.pack", path="mods/my_mod.pack", loaded=True),
            ]
        )
        params = DeduplicateParams(columns=["category", "mount"])
        result = deduplicate(
            make_context(NodeKind.DEDUPLICATE), params, load_selection("land_units_tables", packs=packs)
        )
        # m2 (cavalry, horse) duplicates u3; m1 (infantry, "") is new
        assert keys(result) == ["u1", "u3", "u4", "u5", "u7", "u8", "u9", "u10", "m1"]

    def test_requires_columns(self, make_context, load_selection):
        with pytest.raises(ConfigurationError):
            deduplicate(make_context(NodeKind.DEDUPLICATE), DeduplicateParams(), load_selection("mounts_tables"))
