"""
Script execution environment.

Every run of a script gets its own `ScriptEnv`: a new module namespace, a
private table of the script's own modules, and a private ``__import__``.
Nothing a script creates survives into the next run.

Imports from a script are resolved in two tiers:

* modules next to the script are loaded from source, fresh for every run;
  everything else goes through the normal interpreter import;
* if that fails, the host's own dependency directories are searched, so
  a script can use the host's copy of build123d without installing it
  in its own environment.
"""
from __future__ import annotations

import builtins
import importlib
import importlib.util
import inspect
import logging
import sys
from contextvars import Token
from importlib.machinery import PathFinder, SourceFileLoader, ModuleSpec
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

import build123d

from . import cur_env, ScriptConfigurationError, ScriptLoadError
from .config import Config
from .params import ParameterDefinition, definitions_from

logger = logging.getLogger(__name__)


def host_paths() -> list[str]:
    """Directories holding the host application's own dependencies."""
    res = []
    for mod in (build123d, sys.modules[__package__]):
        p = str(Path(mod.__file__).resolve().parents[1])
        if p not in res:
            res.append(p)
    return res


class ScriptEnv:
    """
    A disposable environment for one run of one script.

    Usage::

        env = ScriptEnv("model.py")
        try:
            env.load()
            result = env.call({"size": 10})
        finally:
            env.close()

    While the script's code runs, the environment is available as
    ``buildpreview.cur_env.get()``.
    """

    # contextvar token
    _token: Token | None = None
    _recurse: int = 0

    def __init__(self, path: str | Path, config: Config | None = None):
        self.config = config or Config()
        self.path = Path(path).resolve()
        self.dir = self.path.parent
        self.bundled = [*self.config.bundled_paths, *host_paths()]

        self.module: ModuleType | None = None
        self.modules: dict[str, ModuleType] = {}

        self.builtins: dict[str, Any] = dict(vars(builtins))
        self.builtins["__import__"] = self._import

        # pick up modules created since the last run
        for p in (str(self.dir), *self.bundled):
            if (finder := sys.path_importer_cache.get(p)) is not None:
                finder.invalidate_caches()

    def __enter__(self):
        if self._token is not None:
            if cur_env.get() is not self:
                raise RuntimeError("recursive call")
            self._recurse += 1
            return self
        self._token = cur_env.set(self)
        return self

    def __exit__(self, *tb):
        if self._recurse:
            self._recurse -= 1
        else:
            cur_env.reset(self._token)
            self._token = None

    def close(self) -> None:
        """Forget the script and every module it loaded."""
        self.module = None
        self.modules.clear()

    ### Loading and calling

    def load(self) -> ModuleType:
        """Compile the script and run its module body.

        The code is compiled with the script's absolute path as file name,
        so tracebacks point at the file on disk.
        """
        try:
            source = self.path.read_bytes()
        except OSError as exc:
            raise ScriptLoadError(f"Cannot read {self.path}: {exc}") from exc
        try:
            code = compile(source, str(self.path), "exec", dont_inherit=True)
        except SyntaxError as exc:
            raise ScriptLoadError(
                f"Syntax error in {self.path.name}, line {exc.lineno}: {exc.msg}"
            ) from exc

        module = ModuleType(self.path.stem)
        module.__file__ = str(self.path)
        module.__builtins__ = self.builtins
        self.module = module

        try:
            with self:
                exec(code, module.__dict__)
        except SystemExit as exc:
            raise ScriptLoadError(f"{self.path.name} exited while loading ({exc.code})") from exc
        except Exception as exc:
            raise ScriptLoadError(
                f"Error while loading {self.path.name}: {type(exc).__name__}: {exc}"
            ) from exc
        return module

    def entry(self) -> Callable:
        """The script's entry function. Raises if there is none."""
        name = self.config.entry_function
        fn = getattr(self.module, name, None)
        if not callable(fn):
            raise ScriptConfigurationError(f"{self.path.name} must define a {name}() function")
        return fn

    def metadata(self) -> Callable | None:
        """The script's parameter metadata function, if it has one."""
        fn = getattr(self.module, self.config.metadata_function, None)
        return fn if callable(fn) else None

    def call(self, params: dict[str, Any]):
        """Call the entry function with a copy of ``params``.

        Exceptions raised by the script are not touched.
        """
        fn = self.entry()
        with self:
            if _takes_argument(fn):
                return fn(dict(params))
            return fn()

    ### Imports

    def _import(self, name, globals=None, locals=None, fromlist=(), level=0):
        if level:
            package = (globals or {}).get("__package__")
            if not package:
                raise ImportError("attempted relative import with no known parent package")
            name = importlib.util.resolve_name("." * level + name, package)

        module = self._load(name)
        if not fromlist:
            return self._load(name.partition(".")[0])

        if hasattr(module, "__path__"):
            for item in fromlist:
                if item == "*" or hasattr(module, item):
                    continue
                sub = f"{name}.{item}"
                try:
                    self._load(sub)
                except ModuleNotFoundError as exc:
                    # "from pkg import name" where name isn't a module
                    if exc.name != sub:
                        raise
        return module

    def _load(self, fullname: str) -> ModuleType:
        if (mod := self.modules.get(fullname)) is not None:
            return mod

        parent, _, child = fullname.rpartition(".")
        if parent:
            pmod = self._load(parent)
            if self.modules.get(parent) is not pmod:
                # submodule of a package the host imported
                return importlib.import_module(fullname)
            spec = PathFinder.find_spec(fullname, getattr(pmod, "__path__", None) or [])
            if spec is None:
                raise ModuleNotFoundError(f"No module named {fullname !r}", name=fullname)
            mod = self._exec(spec)
            setattr(pmod, child, mod)
            return mod

        spec = PathFinder.find_spec(fullname, [str(self.dir)])
        if spec is not None and spec.loader is not None:
            return self._exec(spec)
        try:
            return importlib.import_module(fullname)
        except ModuleNotFoundError as exc:
            if exc.name != fullname:
                raise
            if spec is None:
                spec = PathFinder.find_spec(fullname, self.bundled)
            if spec is None:
                raise
        logger.debug(f"{fullname}: loaded from {spec.origin or spec.submodule_search_locations}")
        return self._exec(spec)

    def _exec(self, spec: ModuleSpec) -> ModuleType:
        module = importlib.util.module_from_spec(spec)
        module.__builtins__ = self.builtins
        self.modules[spec.name] = module
        try:
            if isinstance(spec.loader, SourceFileLoader):
                # compile from source every time: no stale or new bytecode files
                source = spec.loader.get_data(spec.origin)
                code = compile(source, spec.origin, "exec", dont_inherit=True)
                exec(code, module.__dict__)
            else:
                spec.loader.exec_module(module)
        except BaseException:
            del self.modules[spec.name]
            raise
        return module


def _takes_argument(fn: Callable) -> bool:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return True
    for p in sig.parameters.values():
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL):
            return True
    return False


def run_script(path: str | Path, params: dict[str, Any] | None = None, config: Config | None = None):
    """Run a script in a fresh environment and return what ``main`` returned."""
    env = ScriptEnv(path, config)
    try:
        env.load()
        return env.call(params or {})
    finally:
        env.close()


def read_parameter_definitions(path: str | Path, config: Config | None = None) -> list[ParameterDefinition]:
    """Ask a script for its parameters.

    This is strictly best effort: a script without a metadata function,
    one that fails to load, or one that returns garbage simply has no
    parameters. This function never raises.
    """
    env = ScriptEnv(path, config)
    try:
        env.load()
        fn = env.metadata()
        if fn is None:
            logger.debug(f"{env.path.name} declares no parameters")
            return []
        with env:
            data = fn()
        res = definitions_from(data)
    except (Exception, SystemExit) as exc:
        logger.warning(f"Could not read parameter definitions from {env.path.name}: {exc}")
        return []
    finally:
        env.close()

    logger.info(f"Found {len(res)} parameter definition(s) in {env.path.name}")
    return res
