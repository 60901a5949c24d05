"""
Find the script that is "the" model of a workspace.
"""
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import Config

logger = logging.getLogger(__name__)


class Origin(str, Enum):
    MANIFEST = "manifest"
    DEFAULT = "default"
    ACTIVE = "active"


@dataclass(frozen=True)
class ScriptEntrypoint:
    path: Path
    origin: Origin

    def still_valid(self, config: Config | None = None) -> bool:
        """Re-check the entrypoint, e.g. after the file was saved or moved."""
        config = config or Config()
        return self.path.suffix == config.script_suffix and self.path.is_file()


def resolve_entrypoint(
    root: str | Path | None = None,
    active_file: str | Path | None = None,
    config: Config | None = None,
) -> ScriptEntrypoint | None:
    """Pick the active model script.

    In order of priority:

    * the ``main`` entry of the ``[tool.buildpreview]`` table in the
      workspace's ``pyproject.toml``, if it names an existing script;
    * ``model.py`` in the workspace root;
    * the file currently open in the editor, if it is a script.

    Returns ``None`` if none of these apply.
    """
    config = config or Config()

    if root is not None:
        root = Path(root)
        if (path := _from_manifest(root, config)) is not None:
            return ScriptEntrypoint(path, Origin.MANIFEST)

        path = root / config.default_script
        if path.is_file():
            return ScriptEntrypoint(path.resolve(), Origin.DEFAULT)

    if active_file is not None:
        path = Path(active_file)
        if path.suffix == config.script_suffix:
            return ScriptEntrypoint(path.resolve(), Origin.ACTIVE)
    return None


def _from_manifest(root: Path, config: Config) -> Path | None:
    manifest = root / config.manifest
    if not manifest.is_file():
        return None
    try:
        with open(manifest, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.debug(f"Ignoring unreadable manifest {manifest}: {exc}")
        return None

    table = data.get("tool")
    if isinstance(table, dict):
        table = table.get(config.manifest_table)
    main = table.get("main") if isinstance(table, dict) else None
    if not isinstance(main, str) or not main:
        return None

    path = (root / main).resolve()
    if path.suffix != config.script_suffix or not path.is_file():
        logger.debug(f"Manifest main {main !r} is not a usable script, skipped")
        return None
    return path
