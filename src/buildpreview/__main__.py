"""
Command-line host for buildpreview
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from .config import Config
from .entrypoint import resolve_entrypoint
from .main import Engine
from .store import JsonParameterStore


class _Ctx:
    def __init__(self, config: Config, root: Path):
        self.config = config
        self.root = root
        self.store = JsonParameterStore(root / config.store_path)
        self.engine = Engine(self.store, config)

    def script(self, script: str | None) -> Path:
        if script is not None:
            path = Path(script)
            if not path.is_file():
                raise click.ClickException(f"No such script: {script}")
            return path.resolve()
        ep = resolve_entrypoint(self.root, None, self.config)
        if ep is None:
            raise click.ClickException(
                f"No model script found: set [tool.{self.config.manifest_table}] main in "
                f"{self.config.manifest}, create {self.config.default_script}, or name a script"
            )
        return ep.path


def _setup_logging(level: int, log_file: str | None = None) -> None:
    logger = logging.getLogger("buildpreview")
    logger.setLevel(level)
    logger.handlers.clear()

    # stdout carries the results
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")
    for h in handlers:
        h.setFormatter(fmt)
        logger.addHandler(h)


def _parse_assignments(values: tuple[str, ...]) -> dict[str, str]:
    res = {}
    for v in values:
        name, sep, val = v.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {v !r}", param_hint="--param")
        res[name.strip()] = val
    return res


@click.group
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Configuration file (default: buildpreview.toml).",
)
@click.option(
    "-r",
    "--root",
    type=click.Path(file_okay=False, exists=True),
    default=".",
    help="Workspace root.",
)
@click.option("-d", "--debug", is_flag=True)
@click.option("-l", "--log-file", type=click.Path(dir_okay=False), help="Also write the log to this file.")
@click.pass_context
def main(ctx, config_path, root, debug, log_file):
    "preview parametric build123d models"
    _setup_logging(logging.DEBUG if debug else logging.WARNING, log_file)
    ctx.obj = _Ctx(Config.load(config_path), Path(root))


@main.command
@click.pass_obj
def entrypoint(obj):
    "show which script is the workspace's model"
    ep = resolve_entrypoint(obj.root, None, obj.config)
    if ep is None:
        raise click.ClickException("No model script found.")
    click.echo(f"{ep.path} ({ep.origin.value})")


@main.command
@click.argument("script", required=False)
@click.pass_obj
def params(obj, script):
    "list a script's parameters and their effective values"
    path = obj.script(script)
    defs = obj.engine.definitions(path)
    if not defs:
        click.echo("No parameters.")
        return
    values = obj.engine.parameters(path, defs)
    for pd in defs:
        val = values.get(pd.name, "")
        caption = f"  # {pd.caption}" if pd.caption else ""
        click.echo(f"{pd.name} ({pd.type or pd.kind.value}) = {val !r}{caption}")


@main.command("set")
@click.argument("script")
@click.argument("name")
@click.argument("value")
@click.pass_obj
def set_(obj, script, name, value):
    "store a parameter value for a script"
    path = obj.script(script)
    try:
        # numbers, booleans and lists come through as JSON
        value = json.loads(value)
    except ValueError:
        pass
    obj.engine.set_parameter(path, name, value)


@main.command
@click.argument("script", required=False)
@click.option("-a", "--all", "all_", is_flag=True, help="Clear the values of all scripts.")
@click.pass_obj
def clear(obj, script, all_):
    "forget stored parameter values"
    if all_:
        obj.engine.clear_parameters()
    else:
        obj.engine.clear_parameters(obj.script(script))


@main.command
@click.argument("script", required=False)
@click.option("-p", "--param", "param", multiple=True, help="NAME=VALUE, for this run only.")
@click.option("-j", "--json", "as_json", is_flag=True, help="Print the full result as JSON.")
@click.pass_obj
def run(obj, script, param, as_json):
    "execute a script, print its geometry"
    path = obj.script(script)
    res = obj.engine.execute(path, _parse_assignments(param))

    if as_json:
        click.echo(json.dumps(res.to_dict()))
    elif res.ok:
        for i, g in enumerate(res.geometries):
            click.echo(f"{g.name or i}: {g.kind.value}, {g.vertex_count} vertices")
    if not res.ok:
        if not as_json:
            click.echo(str(res), err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
