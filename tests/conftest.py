from __future__ import annotations

import textwrap

import pytest

from buildpreview.main import Engine
from buildpreview.store import MemoryParameterStore


@pytest.fixture
def script(tmp_path):
    """Write a file below tmp_path and return its path.

    Leading newlines are stripped, so line 1 is the first line of code.
    """
    def write(source: str, name: str = "model.py"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip("\n"))
        return path
    return write


@pytest.fixture
def engine():
    return Engine(MemoryParameterStore())


@pytest.fixture
def cube_polygons():
    """A unit cube made of six quads, as a script would write it by hand."""
    return [list(map(list, p)) for p in CUBE_POLYGONS]


CUBE_POLYGONS = [
    [[0, 0, 0], [0, 1, 0], [1, 1, 0], [1, 0, 0]],
    [[0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1]],
    [[0, 0, 0], [1, 0, 0], [1, 0, 1], [0, 0, 1]],
    [[0, 1, 0], [0, 1, 1], [1, 1, 1], [1, 1, 0]],
    [[0, 0, 0], [0, 0, 1], [0, 1, 1], [0, 1, 0]],
    [[1, 0, 0], [1, 1, 0], [1, 1, 1], [1, 0, 1]],
]
