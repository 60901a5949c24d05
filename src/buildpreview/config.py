"""
Configuration for buildpreview.

Reads an optional TOML file and keyword overrides into a plain dataclass.
"""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path


@dataclass
class Config:
    script_suffix: str = ".py"
    default_script: str = "model.py"
    manifest: str = "pyproject.toml"
    manifest_table: str = "buildpreview"

    entry_function: str = "main"
    metadata_function: str = "get_parameter_definitions"

    # extra directories searched when a script's import fails everywhere else
    bundled_paths: list[str] = field(default_factory=list)

    tolerance: float = 0.01
    angular_tolerance: float = 0.1
    outline_segments: int = 16

    store_path: str = ".buildpreview/parameters.json"

    @classmethod
    def load(cls, config_path: str | None = None, **overrides) -> Config:
        """
        Load the configuration.

        The file defaults to ``$BUILDPREVIEW_CONFIG``, then ``buildpreview.toml``
        in the current directory. A missing file is not an error.
        Overrides that are ``None`` are ignored; unknown keys are dropped.
        """
        data: dict = {}
        if config_path is None:
            config_path = os.environ.get("BUILDPREVIEW_CONFIG", "buildpreview.toml")
        path = Path(config_path)
        if path.is_file():
            with open(path, "rb") as f:
                data = tomllib.load(f)
            # allow the settings to live in a [buildpreview] table as well
            if isinstance(data.get("buildpreview"), dict):
                data = data["buildpreview"]
        for key, val in overrides.items():
            if val is not None:
                data[key] = val
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> Config:
        known = {f.name for f in fields(cls)}
        cfg = cls(**{k: v for k, v in data.items() if k in known})
        cfg.bundled_paths = [str(p) for p in cfg.bundled_paths]
        return cfg
