"""
Parametric model preview engine

This package runs a parametric CAD model, written as a Python script on top
of build123d, in a fresh sandbox on every invocation and turns whatever the
script returns into flat, renderable geometry buffers.
"""
from __future__ import annotations

import contextvars as _ctx

__all__ = [
    "cur_env",
    "process",
    "Engine",
    "Success",
    "Failure",
    "BuildPreviewError",
    "ScriptConfigurationError",
    "ScriptLoadError",
    "GeometryError",
]

cur_env = _ctx.ContextVar("cur_env")

del _ctx


class BuildPreviewError(Exception):
    """Base class for errors raised by the engine itself."""
    pass


class ScriptConfigurationError(BuildPreviewError):
    """The script does not provide what the engine requires, e.g. ``main``."""
    pass


class ScriptLoadError(BuildPreviewError):
    """The script could not be compiled, or its module body raised."""
    pass


class GeometryError(BuildPreviewError):
    """The script returned something that is not geometry."""
    pass

from .main import process, Engine, Success, Failure
