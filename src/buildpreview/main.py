"""
Main wrapper to execute model scripts
"""
from __future__ import annotations

import json
import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from . import ScriptConfigurationError, ScriptLoadError, GeometryError
from .config import Config
from .env import run_script, read_parameter_definitions
from .geometry import GeometryDescriptor, normalize
from .params import ParameterDefinition, resolve_parameters
from .store import MemoryParameterStore, ParameterStore, store_key

logger = logging.getLogger(__name__)

SNAPSHOT_LIMIT = 10_000


class FailureKind(str, Enum):
    CONFIGURATION = "configuration"
    LOAD = "load"
    RUNTIME = "runtime"
    GEOMETRY = "geometry"


@dataclass(frozen=True)
class SourceLocation:
    path: str
    line: int
    column: int | None = None

    def __str__(self):
        if self.column is None:
            return f"{self.path}:{self.line}"
        return f"{self.path}:{self.line}:{self.column}"


@dataclass
class Success:
    geometries: list[GeometryDescriptor]
    parameters: dict[str, Any]
    definitions: list[ParameterDefinition] = field(default_factory=list)

    ok = True

    def to_dict(self) -> dict:
        return dict(
            ok=True,
            geometries=[g.to_dict() for g in self.geometries],
            parameters=self.parameters,
            definitions=[d.to_dict() for d in self.definitions],
        )


@dataclass
class Failure:
    kind: FailureKind
    message: str
    location: SourceLocation | None = None

    ok = False

    def __str__(self):
        if self.location is None:
            return self.message
        return f"{self.location}: {self.message}"

    def to_dict(self) -> dict:
        res: dict[str, Any] = dict(ok=False, kind=self.kind.value, message=self.message)
        if (loc := self.location) is not None:
            res["location"] = dict(path=loc.path, line=loc.line, column=loc.column)
        return res


ExecutionResult = Success | Failure


def source_location(exc: BaseException, path: str | Path) -> SourceLocation | None:
    """Find where in the script an exception originated.

    Walks the exception and its causes. Lines and columns are 1-based.
    """
    path = Path(path).resolve()
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))

        if isinstance(exc, SyntaxError) and exc.filename and exc.lineno:
            if Path(exc.filename).resolve() == path:
                return SourceLocation(str(path), exc.lineno, exc.offset)

        for frame in reversed(traceback.extract_tb(exc.__traceback__)):
            if Path(frame.filename).resolve() != path or not frame.lineno:
                continue
            col = getattr(frame, "colno", None)
            return SourceLocation(str(path), frame.lineno, None if col is None else col + 1)

        exc = exc.__cause__ or exc.__context__
    return None


def _kind(exc: BaseException) -> FailureKind:
    if isinstance(exc, ScriptConfigurationError):
        return FailureKind.CONFIGURATION
    if isinstance(exc, ScriptLoadError):
        return FailureKind.LOAD
    if isinstance(exc, GeometryError):
        return FailureKind.GEOMETRY
    return FailureKind.RUNTIME


def _message(exc: BaseException) -> str:
    if isinstance(exc, (ScriptConfigurationError, ScriptLoadError, GeometryError)):
        return str(exc)
    if str(exc):
        return f"{type(exc).__name__}: {exc}"
    return type(exc).__name__


def _snapshot(params: dict[str, Any]) -> str:
    try:
        res = json.dumps(params, sort_keys=True, indent=2, default=repr)
    except (TypeError, ValueError):
        return "<unavailable>"
    if len(res) > SNAPSHOT_LIMIT:
        res = res[:SNAPSHOT_LIMIT] + "\n… (truncated)"
    return res


class Engine:
    """
    Runs model scripts.

    The engine holds no state besides its parameter store and its
    configuration: every `execute` call loads the script afresh.
    """

    def __init__(self, store: ParameterStore | None = None, config: Config | None = None):
        self.store = store if store is not None else MemoryParameterStore()
        self.config = config or Config()

    def definitions(self, path: str | Path) -> list[ParameterDefinition]:
        """The parameters the script declares; empty if that can't be determined."""
        return read_parameter_definitions(path, self.config)

    def parameters(
        self,
        path: str | Path,
        definitions: list[ParameterDefinition] | None = None,
    ) -> dict[str, Any]:
        """Effective parameter values: the script's defaults plus stored edits."""
        if definitions is None:
            definitions = self.definitions(path)
        return resolve_parameters(definitions, self.store.get(store_key(path)))

    def set_parameter(self, path: str | Path, name: str, value: Any) -> None:
        self.store.update(store_key(path), name, value)

    def clear_parameters(self, path: str | Path | None = None) -> None:
        """Forget stored values for one script, or for all of them."""
        if path is None:
            self.store.clear_all()
        else:
            self.store.clear(store_key(path))

    def execute(self, path: str | Path, overrides: dict[str, Any] | None = None) -> ExecutionResult:
        """Run a script and normalize its output.

        ``overrides`` are applied on top of the stored values for this run
        only; they are coerced like stored values but not persisted.

        This method does not raise for anything the script does.
        """
        path = Path(path).resolve()
        logger.info(f"Executing {path}")

        definitions = self.definitions(path)
        params: dict[str, Any] = {}

        try:
            stored = self.store.get(store_key(path)) or {}
            if overrides:
                stored = {**stored, **overrides}
            params = resolve_parameters(definitions, stored)
            raw = run_script(path, params, self.config)
            geometries = normalize(raw, self.config)
        except (Exception, SystemExit) as exc:
            failure = Failure(_kind(exc), _message(exc), source_location(exc, path))
            logger.error(f"Execution failed: {failure.message}")
            if failure.location is not None:
                logger.error(f"Source location: {failure.location}")
            if params:
                logger.info(f"Parameter snapshot:\n{_snapshot(params)}")
            logger.debug("Traceback", exc_info=exc)
            return failure

        logger.info(f"{path.name}: {len(geometries)} geometr{'y' if len(geometries) == 1 else 'ies'}")
        return Success(geometries, params, definitions)


def process(
    f: str | Path,
    /,
    params: dict[str, Any] | None = None,
    config: Config | None = None,
) -> ExecutionResult:
    """Execute a model script once.

    ``params`` are used like stored parameter values: they are coerced to
    the declared parameter types and ignored if they don't fit.
    """
    return Engine(config=config).execute(f, params)
