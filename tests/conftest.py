import logging

import pytest

from packflow.archive import MemoryArchiveStore, ModCatalog, ModEntry
from packflow.config import EngineConfig
from packflow.counters import CounterRegistry
from packflow.executors.selection import select_tables
from packflow.node import NodeContext
from packflow.payloads import PackFile, PackFiles
from packflow.ports import NodeKind
from packflow.scheduler import GraphScheduler
from packflow.schema import SchemaRegistry
from packflow.utils.logging import logger

EXECUTION_ID = "2025-12-14_23-19-58"

LAND_UNIT_FIELDS = [
    {"name": "key", "field_type": "StringU8", "is_key": True},
    {"name": "category", "field_type": "StringU8"},
    {"name": "num_mods", "field_type": "I32"},
    {"name": "morale", "field_type": "I32"},
    {"name": "mount", "field_type": "StringU8", "is_reference": ["mounts_tables", "key"]},
]

SCHEMAS = {
    "land_units_tables": [{"version": 3, "fields": LAND_UNIT_FIELDS}],
    "mounts_tables": [
        {
            "version": 1,
            "fields": [
                {"name": "key", "field_type": "StringU8", "is_key": True},
                {"name": "speed", "field_type": "I32"},
            ],
        }
    ],
    "main_units_tables": [
        {
            "version": 2,
            "fields": [
                {"name": "unit", "field_type": "StringU8", "is_key": True},
                {
                    "name": "land_unit",
                    "field_type": "StringU8",
                    "is_reference": ["land_units_tables", "key"],
                },
                {"name": "caste", "field_type": "StringU8"},
            ],
        }
    ],
    "unit_variants_tables": [
        {
            "version": 0,
            "fields": [
                {"name": "variant_key", "field_type": "StringU8", "is_key": True},
                {"name": "unit", "field_type": "StringU8"},
                {"name": "id", "field_type": "I32"},
                {"name": "enabled", "field_type": "Boolean"},
            ],
        }
    ],
}

LAND_UNIT_ROWS = [
    ["u1", "infantry", 100, 50, "horse"],
    ["u2", "infantry", 80, 45, "horse"],
    ["u3", "cavalry", 60, 70, "horse"],
    ["u4", "cavalry", 40, 65, "wolf"],
    ["u5", "missile", 120, 30, ""],
    ["u6", "missile", 100, 35, ""],
    ["u7", "artillery", 20, 20, ""],
    ["u8", "infantry", 90, 55, "boar"],
    ["u9", "cavalry", 50, 60, "boar"],
    ["u10", "monster", 1, 90, "elephant"],
]

MAIN_UNIT_ROWS = [
    ["mu1", "u1", "melee"],
    ["mu2", "u1", "melee"],
    ["mu3", "u3", "cavalry"],
    ["mu4", "u5", "missile"],
    ["mu5", "u6", "missile"],
]

# Four distinct mounts; seven of the ten land units ride one of them
MOUNT_ROWS = [["horse", 10], ["wolf", 12], ["boar", 11], ["elephant", 6]]

BASE_PACK = {
    "entries": [
        {
            "name": "db\\land_units_tables\\data__",
            "data": {"version": 3, "rows": LAND_UNIT_ROWS},
        },
        {
            "name": "db\\main_units_tables\\data__",
            "data": {"version": 2, "rows": MAIN_UNIT_ROWS},
        },
        {
            "name": "db\\mounts_tables\\data__",
            "data": {"version": 1, "rows": MOUNT_ROWS},
        },
    ]
}

MOD_PACK = {
    "entries": [
        {
            "name": "db\\land_units_tables\\my_mod",
            "data": {
                "version": 3,
                "fields": LAND_UNIT_FIELDS,
                "rows": [
                    {"key": "m1", "category": "infantry", "num_mods": 5, "morale": 40, "mount": ""},
                    {"key": "m2", "category": "cavalry", "num_mods": 8, "morale": 75, "mount": "horse"},
                ],
            },
        },
        {
            "name": "text\\db\\unit_names.tsv",
            "data": "key\tname\tcost\nm1\tSpearmen\t500\nm2\tKnights\n",
        },
    ]
}

BASE_PACK_PATH = "data/db.pack"
MOD_PACK_PATH = "mods/my_mod.pack"


@pytest.fixture(autouse=True)
def reset_logger():
    """Quiet console logging per test and restore the global logger afterwards."""
    logger.configure(structured=False, level="WARNING")
    yield
    logger._secrets = set()
    logger.configure(structured=False, level="INFO")


@pytest.fixture
def captured_logs(caplog):
    """Route packflow records through pytest's caplog."""
    logger.configure(structured=False, level="DEBUG")
    logger.logger.propagate = True
    caplog.set_level(logging.DEBUG, logger="packflow")
    yield caplog
    logger.logger.propagate = False


@pytest.fixture
def schemas():
    return SchemaRegistry.from_dict(SCHEMAS)


@pytest.fixture
def store():
    return MemoryArchiveStore({BASE_PACK_PATH: BASE_PACK, MOD_PACK_PATH: MOD_PACK})


@pytest.fixture
def catalog():
    return ModCatalog(
        [
            ModEntry(name="my_mod.pack", path=MOD_PACK_PATH),
            ModEntry(name="old_mod.pack", path="mods/old_mod.pack", enabled=False),
        ],
        data_dir="data",
        base_game_pack="db.pack",
    )


@pytest.fixture
def make_context(store, schemas, catalog, tmp_path):
    """Factory for executor contexts sharing one store and counter registry."""
    counters = CounterRegistry()

    def _make(kind=NodeKind.FILTER, node_id="n1", execution_id=EXECUTION_ID):
        return NodeContext(
            node_id=node_id,
            kind=NodeKind(kind),
            archive=store,
            schemas=schemas,
            catalog=catalog,
            counters=counters,
            execution_id=execution_id,
            output_dir=str(tmp_path / "output"),
        )

    return _make


@pytest.fixture
def scheduler_factory(store, schemas, catalog, tmp_path):
    """Factory for schedulers over the sample packs, writing under tmp_path."""

    def _make(**config):
        settings = EngineConfig(output_dir=str(tmp_path / "output"), **config)
        return GraphScheduler(store, schemas, catalog, config=settings)

    return _make


@pytest.fixture
def base_packs():
    return PackFiles(files=[PackFile(name="db.pack", path=BASE_PACK_PATH, loaded=True)])


@pytest.fixture
def load_selection(make_context, base_packs):
    """Factory loading tables from the base pack (or given packs) as a TableSelection."""

    def _load(*names, packs=None):
        context = make_context(NodeKind.TABLE_SELECTION, node_id="loader")
        return select_tables(context, list(names), packs or base_packs)

    return _load
