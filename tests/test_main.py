from __future__ import annotations

import json

import pytest

from buildpreview import Engine, Failure, Success, process
from buildpreview.config import Config
from buildpreview.geometry import GeometryKind
from buildpreview.main import FailureKind, SourceLocation, _snapshot, source_location
from buildpreview.store import MemoryParameterStore, store_key

CUBE_SCRIPT = """
    from build123d import Box

    def main(params):
        return Box(10, 10, 10)
"""


def _closed(desc):
    n = desc.vertex_count
    return len(desc.indices) % 3 == 0 and all(0 <= i < n for i in desc.indices)


def test_single_solid(script, engine):
    res = engine.execute(script(CUBE_SCRIPT))
    assert isinstance(res, Success)
    assert res.ok
    (desc,) = res.geometries
    assert desc.kind == GeometryKind.SOLID
    assert desc.vertex_count >= 8
    assert _closed(desc)


def test_single_solid_by_hand(script, engine):
    path = script("""
        def main(params):
            s = params.get("size", 10)
            quads = [
                [[0, 0, 0], [0, s, 0], [s, s, 0], [s, 0, 0]],
                [[0, 0, s], [s, 0, s], [s, s, s], [0, s, s]],
                [[0, 0, 0], [s, 0, 0], [s, 0, s], [0, 0, s]],
                [[0, s, 0], [0, s, s], [s, s, s], [s, s, 0]],
                [[0, 0, 0], [0, 0, s], [0, s, s], [0, s, 0]],
                [[s, 0, 0], [s, s, 0], [s, s, s], [s, 0, s]],
            ]
            return {"kind": "solid", "polygons": quads}
    """)
    res = engine.execute(path)
    (desc,) = res.geometries
    assert desc.vertex_count == 36
    assert max(desc.positions) == 10.0
    assert _closed(desc)


def test_missing_entry_function(script, engine):
    path = script("""
        def build(params):
            return None
    """)
    res = engine.execute(path)
    assert isinstance(res, Failure)
    assert not res.ok
    assert res.kind == FailureKind.CONFIGURATION
    assert "main()" in res.message


def test_runtime_error_location(script, engine, caplog):
    path = script("""
        from build123d import Box

        def main(params):
            raise ValueError("boom")
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.RUNTIME
    assert "boom" in res.message
    assert res.message.startswith("ValueError")
    assert res.location.line == 4
    assert res.location.path == str(path.resolve())
    assert str(res).startswith(f"{path.resolve()}:4:")
    assert "boom" in caplog.text


def test_error_in_local_module_maps_to_script(script, engine):
    script("def fail():\n    raise KeyError('gone')\n", "helper.py")
    path = script("""
        import helper

        def main(params):
            return helper.fail()
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.RUNTIME
    # the innermost frame in the model script itself
    assert res.location.line == 4


def test_choice_defaults_to_first(script, engine):
    path = script("""
        def get_parameter_definitions():
            return [dict(name="color", type="choice", values=["red", "green", "blue"])]

        def main(params):
            return None
    """)
    res = engine.execute(path)
    assert res.parameters == {"color": "red"}
    assert res.geometries == []
    assert [d.name for d in res.definitions] == ["color"]


def test_solid_and_outline(script, engine):
    path = script("""
        from build123d import Box, Circle

        def main(params):
            return [Box(2, 2, 2), Circle(1)]
    """)
    res = engine.execute(path)
    assert [g.kind for g in res.geometries] == [GeometryKind.SOLID, GeometryKind.OUTLINE]


def test_repeat_runs_are_equal(script, engine):
    path = script(CUBE_SCRIPT)
    first = engine.execute(path)
    second = engine.execute(path)
    assert first.geometries == second.geometries


def test_syntax_error(script, engine):
    path = script("""
        def main(params):
            return [1, 2
        x = 3
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.LOAD
    assert res.location is not None
    assert res.location.path == str(path.resolve())
    assert res.location.line in (2, 3)


def test_module_body_error(script, engine):
    path = script("""
        SIZE = 10

        RADIUS = SIZE / 0

        def main(params):
            return None
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.LOAD
    assert "division by zero" in res.message
    assert res.location.line == 3


def test_geometry_error(script, engine):
    path = script("""
        def main(params):
            return ["not geometry"]
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.GEOMETRY
    assert "str" in res.message


def test_system_exit_is_a_failure(script, engine):
    path = script("""
        import sys

        def main(params):
            sys.exit(2)
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.RUNTIME
    assert res.location.line == 4


PARAM_SCRIPT = """
    from build123d import Box

    def get_parameter_definitions():
        return [
            dict(name="size", type="number", initial=10),
            dict(name="count", type="int", initial=1),
        ]

    def main(params):
        return {"kind": "outline", "sides": [[[0, 0], [params["size"], 0]]] * params["count"]}
"""


def test_stored_parameters(script, engine):
    path = script(PARAM_SCRIPT)
    engine.set_parameter(path, "size", "25")
    res = engine.execute(path)
    assert res.parameters == {"size": 25.0, "count": 1}
    assert res.geometries[0].positions[3] == 25.0

    assert engine.parameters(path) == {"size": 25.0, "count": 1}

    engine.clear_parameters(path)
    assert engine.execute(path).parameters == {"size": 10, "count": 1}


def test_overrides_are_not_stored(script, engine):
    path = script(PARAM_SCRIPT)
    engine.set_parameter(path, "size", 3)
    res = engine.execute(path, {"count": "2"})
    assert res.parameters == {"size": 3, "count": 2}
    assert res.geometries[0].vertex_count == 4
    assert engine.store.get(store_key(path)) == {"size": 3}


def test_bad_stored_value_uses_default(script, engine):
    path = script(PARAM_SCRIPT)
    engine.set_parameter(path, "size", "huge")
    assert engine.execute(path).parameters["size"] == 10


def test_clear_all(script):
    store = MemoryParameterStore()
    engine = Engine(store)
    a = script(PARAM_SCRIPT, "a.py")
    b = script(PARAM_SCRIPT, "b.py")
    engine.set_parameter(a, "size", 1)
    engine.set_parameter(b, "size", 2)
    engine.clear_parameters()
    assert len(store) == 0


def test_broken_metadata_still_runs(script, engine, caplog):
    path = script("""
        def get_parameter_definitions():
            raise RuntimeError("no metadata today")

        def main(params):
            return {"kind": "outline", "sides": [[[0, 0], [1, 0]]]}
    """)
    res = engine.execute(path)
    assert res.ok
    assert res.parameters == {}
    assert len(res.geometries) == 1
    assert "no metadata today" in caplog.text


def test_main_without_arguments(script, engine):
    path = script("""
        def main():
            return {"kind": "outline", "sides": []}
    """)
    res = engine.execute(path)
    assert res.ok
    assert res.geometries[0].vertex_count == 0


def test_process(script):
    path = script(PARAM_SCRIPT)
    res = process(path, {"size": 4})
    assert res.parameters["size"] == 4
    res = process(path, config=Config(entry_function="build"))
    assert res.kind == FailureKind.CONFIGURATION
    assert "build()" in res.message


def test_results_are_json(script, engine):
    ok = engine.execute(script(CUBE_SCRIPT)).to_dict()
    assert json.loads(json.dumps(ok))["geometries"][0]["kind"] == "solid"

    bad = engine.execute(script("def main(params):\n    return 1 / 0\n", "bad.py")).to_dict()
    data = json.loads(json.dumps(bad))
    assert data["ok"] is False
    assert data["kind"] == "runtime"
    assert data["location"]["line"] == 2


def test_source_location_outside_script(tmp_path):
    try:
        raise RuntimeError("elsewhere")
    except RuntimeError as exc:
        assert source_location(exc, tmp_path / "model.py") is None


def test_source_location_str():
    assert str(SourceLocation("/m.py", 3)) == "/m.py:3"
    assert str(SourceLocation("/m.py", 3, 7)) == "/m.py:3:7"


def test_snapshot_is_truncated():
    snap = _snapshot({"text": "x" * 20_000})
    assert len(snap) < 10_100
    assert snap.endswith("(truncated)")


@pytest.mark.parametrize("name", ["model.py", "sub/dir/model.py"])
def test_execute_accepts_relative_paths(script, engine, monkeypatch, tmp_path, name):
    script(CUBE_SCRIPT, name)
    monkeypatch.chdir(tmp_path)
    assert engine.execute(name).ok


def test_oversized_stored_value(script, engine):
    path = script(PARAM_SCRIPT)
    engine.set_parameter(path, "size", 10**400)
    engine.set_parameter(path, "count", 10**400)
    res = engine.execute(path)
    assert res.ok
    assert res.parameters == {"size": 10, "count": 1}


def test_oversized_geometry_is_a_failure(script, engine):
    path = script("""
        def main(params):
            return {"kind": "outline", "sides": [[[0, 0], [10**400, 0]]]}
    """)
    res = engine.execute(path)
    assert res.kind == FailureKind.GEOMETRY
