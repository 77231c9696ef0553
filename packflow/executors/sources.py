"""Source nodes: resolve pack names to archives."""

from typing import List

from pydantic import Field, field_validator

from packflow.exceptions import ConfigurationError, ReferenceNotFoundError
from packflow.executors.common import NodeParams, split_lines
from packflow.node import NodeContext
from packflow.payloads import PackFile, PackFiles


def _with_extension(name: str) -> str:
    return name if name.lower().endswith(".pack") else f"{name}.pack"


# -------------------------------------------------------------------------
# 1. Packed files
# -------------------------------------------------------------------------


class PackedFilesParams(NodeParams):
    files: List[str] = Field(default_factory=list, description="Pack names, list or one per line")

    @field_validator("files", mode="before")
    @classmethod
    def _split(cls, value):
        return split_lines(value)


def packed_files(context: NodeContext, params: PackedFilesParams, data) -> PackFiles:
    """
    Resolves each listed pack against enabled mods, then all mods, then the
    data directory. Unresolved packs stay in the output with an error.
    """
    if not params.files:
        raise ConfigurationError("No pack files listed")

    files = [context.catalog.pack_file(_with_extension(n), context.archive) for n in params.files]
    loaded = sum(1 for f in files if f.loaded)
    context.log.info("Resolved pack files", requested=len(files), loaded=loaded)
    return PackFiles(files=files)


# -------------------------------------------------------------------------
# 2. Single pack (dropdown)
# -------------------------------------------------------------------------


class PackDropdownParams(NodeParams):
    selected_pack: str = Field("", description="Pack to read, base game pack is added alongside")


def pack_files_dropdown(context: NodeContext, params: PackDropdownParams, data) -> PackFiles:
    if not params.selected_pack.strip():
        raise ConfigurationError("No pack selected")

    name = _with_extension(params.selected_pack.strip())
    selected = context.catalog.pack_file(name, context.archive)
    if not selected.loaded:
        raise ReferenceNotFoundError(f"Pack '{name}' not found")

    files: List[PackFile] = [selected]
    base = context.catalog.base_game_file(context.archive)
    if base is not None and base.path != selected.path:
        files.append(base)
    return PackFiles(files=files)


# -------------------------------------------------------------------------
# 3. All enabled mods
# -------------------------------------------------------------------------


class AllEnabledModsParams(NodeParams):
    include_base_game: bool = Field(True, description="Also read the base game pack")


def all_enabled_mods(context: NodeContext, params: AllEnabledModsParams, data) -> PackFiles:
    files = []
    for mod in context.catalog.enabled_mods():
        if context.archive.exists(mod.path):
            files.append(PackFile(name=mod.name, path=mod.path, loaded=True))
        else:
            files.append(PackFile(name=mod.name, path=mod.path, error="File not found"))

    if params.include_base_game:
        base = context.catalog.base_game_file(context.archive)
        if base is not None:
            files.append(base)
        else:
            context.log.warning("Base game pack not found", path=context.catalog.base_game_path)

    context.log.info("Collected enabled mods", count=len(files))
    return PackFiles(files=files)
