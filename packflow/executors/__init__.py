from typing import Optional

from packflow.executors import (
    custom,
    filtering,
    generation,
    numeric,
    output,
    references,
    relational,
    selection,
    sources,
    text,
)
from packflow.ports import NodeKind
from packflow.registry import ExecutorRegistry


def register_standard_executors(registry: Optional[ExecutorRegistry] = None) -> ExecutorRegistry:
    """
    Registers one executor for every node kind.

    Returns a new registry unless one is passed in. Fails loudly if a kind
    is left without an executor.
    """
    registry = registry if registry is not None else ExecutorRegistry()
    K = NodeKind

    # Sources
    registry.register(K.PACKED_FILES, sources.packed_files, sources.PackedFilesParams)
    registry.register(K.PACK_FILES_DROPDOWN, sources.pack_files_dropdown, sources.PackDropdownParams)
    registry.register(K.ALL_ENABLED_MODS, sources.all_enabled_mods, sources.AllEnabledModsParams)

    # Selection
    registry.register(K.TABLE_SELECTION, selection.table_selection, selection.TableSelectionParams)
    registry.register(
        K.TABLE_SELECTION_DROPDOWN, selection.table_selection_dropdown, selection.TableDropdownParams
    )
    registry.register(K.COLUMN_SELECTION, selection.column_selection, selection.ColumnSelectionParams)
    registry.register(
        K.COLUMN_SELECTION_DROPDOWN, selection.column_selection, selection.ColumnSelectionParams
    )
    registry.register(K.GROUP_BY_COLUMNS, selection.group_by_columns, selection.GroupByColumnsParams)

    # Filters
    registry.register(K.FILTER, filtering.filter_rows, filtering.FilterParams)
    registry.register(K.MULTI_FILTER, filtering.multi_filter, filtering.MultiFilterParams)
    registry.register(K.DEDUPLICATE, filtering.deduplicate, filtering.DeduplicateParams)

    # References
    registry.register(
        K.REFERENCE_LOOKUP, references.reference_lookup, references.ReferenceLookupParams
    )
    registry.register(
        K.REVERSE_REFERENCE_LOOKUP,
        references.reverse_reference_lookup,
        references.ReverseReferenceLookupParams,
    )

    # Relational
    registry.register(K.INDEX_TABLE, relational.index_table, relational.IndexTableParams)
    registry.register(K.LOOKUP, relational.lookup, relational.LookupParams)
    registry.register(K.FLATTEN_NESTED, relational.flatten_nested, relational.FlattenNestedParams)
    registry.register(
        K.AGGREGATE_NESTED, relational.aggregate_nested, relational.AggregateNestedParams
    )
    registry.register(K.EXTRACT_TABLE, relational.extract_table, relational.ExtractTableParams)
    registry.register(K.GROUP_BY, relational.group_by, relational.GroupByParams)

    # Row generation
    registry.register(K.GENERATE_ROWS, generation.generate_rows, generation.GenerateRowsParams)
    registry.register(K.ADD_NEW_COLUMN, generation.add_new_column, generation.AddNewColumnParams)

    # Numeric changes
    registry.register(
        K.NUMERIC_ADJUSTMENT, numeric.numeric_adjustment, numeric.NumericAdjustmentParams
    )
    registry.register(K.MATH_MAX, numeric.math_max, numeric.MathMaxParams)
    registry.register(K.MATH_CEIL, numeric.math_ceil, numeric.MathCeilParams)
    registry.register(K.MERGE_CHANGES, numeric.merge_changes, numeric.MergeChangesParams)

    # Text
    registry.register(K.TEXT_SURROUND, text.text_surround, text.TextSurroundParams)
    registry.register(K.APPEND_TEXT, text.append_text, text.AppendTextParams)
    registry.register(K.TEXT_JOIN, text.text_join, text.TextJoinParams)
    registry.register(
        K.GROUPED_COLUMNS_TO_TEXT, text.grouped_columns_to_text, text.GroupedColumnsToTextParams
    )

    # Output
    registry.register(K.SAVE_CHANGES, output.save_changes, output.SaveChangesParams)
    registry.register(K.DUMP_TO_TSV, output.dump_to_tsv, output.DumpToTsvParams)
    registry.register(
        K.GET_COUNTER_COLUMN, output.get_counter_column, output.GetCounterColumnParams
    )

    # Custom schemas
    registry.register(K.CUSTOM_SCHEMA, custom.custom_schema, custom.CustomSchemaParams)
    registry.register(K.READ_TSV_FROM_PACK, custom.read_tsv_from_pack, custom.ReadTsvParams)
    registry.register(K.CUSTOM_ROWS_INPUT, custom.custom_rows_input, custom.CustomRowsParams)

    missing = registry.missing_kinds()
    if missing:
        raise RuntimeError(f"No executor for node kinds: {', '.join(k.value for k in missing)}")
    return registry
