"""
Turn whatever a script returned into flat geometry buffers.

A script may return build123d shapes, or mappings of the form::

    {"kind": "solid", "polygons": [[[0,0,0], [1,0,0], [1,1,0]], ...],
     "color": [1, 0, 0], "transforms": [... 16 numbers ...]}
    {"kind": "outline", "sides": [[[0,0], [1,0]], [[1,0], [1,1]], ...]}

or pre-tessellated ``{"kind": "solid", "positions": [...], "normals":
[...], "indices": [...], "colors": [...]}``. It may return one of these,
a (nested) list of them, or a mapping of names to them.

The result only contains plain lists of floats and ints. Attribute
buffers whose length doesn't fit the vertex count are replaced, never
passed on.
"""
from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from build123d import GeomType, Shape

from . import GeometryError
from .config import Config

logger = logging.getLogger(__name__)

UP = (0.0, 0.0, 1.0)
GRAY = (0.7, 0.7, 0.7, 1.0)

_GEOMETRY_KEYS = {"kind", "polygons", "sides", "positions"}


class GeometryKind(str, Enum):
    SOLID = "solid"
    OUTLINE = "outline"


@dataclass
class GeometryDescriptor:
    kind: GeometryKind
    positions: list[float]
    colors: list[float]
    normals: list[float] | None = None
    indices: list[int] | None = None
    transforms: list[float] | None = None
    name: str | None = None

    @property
    def vertex_count(self) -> int:
        return len(self.positions) // 3

    def to_dict(self) -> dict:
        res: dict[str, Any] = dict(kind=self.kind.value, positions=self.positions, colors=self.colors)
        for k in ("normals", "indices", "transforms", "name"):
            if (v := getattr(self, k)) is not None:
                res[k] = v
        return res


### Buffer helpers

def flatten(values) -> list[float]:
    """Flatten nested sequences of numbers into one list of floats."""
    res: list[float] = []

    def walk(v):
        if isinstance(v, numbers.Real):
            try:
                res.append(float(v))
            except OverflowError:
                raise GeometryError("Number too large for a float") from None
            return
        if isinstance(v, (str, bytes, Mapping)):
            raise GeometryError(f"Not a number: {v !r}")
        try:
            it = iter(v)
        except TypeError:
            raise GeometryError(f"Not a number: {v !r}") from None
        for x in it:
            walk(x)

    walk(values)
    return res


def _point(p) -> tuple[float, float, float]:
    if hasattr(p, "X"):  # build123d Vector
        return (float(p.X), float(p.Y), float(p.Z))
    p = flatten(p)
    if len(p) == 2:
        return (p[0], p[1], 0.0)
    if len(p) != 3:
        raise GeometryError(f"A point needs 2 or 3 coordinates, not {len(p)}")
    return (p[0], p[1], p[2])


def face_normal(vertices: list[tuple[float, float, float]]) -> tuple[float, float, float]:
    """Unit normal of a polygon from its first two edges; up if degenerate."""
    v0, v1, v2 = vertices[0], vertices[1], vertices[2]
    e1 = (v1[0] - v0[0], v1[1] - v0[1], v1[2] - v0[2])
    e2 = (v2[0] - v0[0], v2[1] - v0[1], v2[2] - v0[2])
    n = (
        e1[1] * e2[2] - e1[2] * e2[1],
        e1[2] * e2[0] - e1[0] * e2[2],
        e1[0] * e2[1] - e1[1] * e2[0],
    )
    length = math.sqrt(n[0] * n[0] + n[1] * n[1] + n[2] * n[2])
    if length == 0 or not math.isfinite(length):
        return UP
    return (n[0] / length, n[1] / length, n[2] / length)


def triangulate(n: int) -> list[tuple[int, int, int]]:
    """Fan triangulation of a convex polygon with ``n`` vertices."""
    return [(0, i, i + 1) for i in range(1, n - 1)]


def _rgba(color) -> tuple[float, ...] | None:
    if color is None:
        return None
    if hasattr(color, "to_tuple"):  # build123d Color
        color = color.to_tuple()
    try:
        c = flatten(color)
    except GeometryError:
        return None
    if len(c) == 3:
        c.append(1.0)
    if len(c) != 4:
        return None
    return tuple(c)


def _repair(value, count: int, stride: int, default, what: str) -> list[float]:
    if value is not None:
        try:
            buf = flatten(value)
        except GeometryError:
            logger.warning(f"{what}: not a numeric buffer, replaced")
        else:
            if len(buf) == count * stride:
                return buf
            logger.warning(f"{what}: {len(buf)} values for {count} vertices, replaced")
    return list(default) * count


def _indices(buf, count: int) -> list[int]:
    sequential = list(range(count - count % 3))
    if buf is None:
        return sequential
    try:
        idx = [int(i) for i in flatten(buf)]
    except (GeometryError, ValueError, OverflowError):
        idx = None
    if idx is None or len(idx) % 3 or any(i < 0 or i >= count for i in idx):
        logger.warning(f"index buffer does not fit {count} vertices, regenerated")
        return sequential
    return idx


def _transforms(value) -> list[float] | None:
    if value is None:
        return None
    try:
        m = flatten(value)
    except GeometryError:
        m = []
    if len(m) != 16:
        logger.warning("transforms must be a 4x4 matrix, dropped")
        return None
    return m


### Solids and outlines

def solid(polygons, color=None, transforms=None, name=None) -> GeometryDescriptor:
    """Triangulate polygons into a solid descriptor.

    Every polygon is fanned from its first vertex; all vertices it emits
    share the polygon's normal.
    """
    positions: list[float] = []
    normals: list[float] = []
    for poly in polygons:
        if isinstance(poly, Mapping):
            poly = poly.get("vertices", ())
        verts = [_point(p) for p in poly]
        if len(verts) < 3:
            continue
        normal = face_normal(verts)
        for tri in triangulate(len(verts)):
            for i in tri:
                positions.extend(verts[i])
                normals.extend(normal)

    count = len(positions) // 3
    rgba = _rgba(color) or GRAY
    return GeometryDescriptor(
        kind=GeometryKind.SOLID,
        positions=positions,
        normals=normals,
        indices=list(range(count)),
        colors=list(rgba) * count,
        transforms=_transforms(transforms),
        name=name,
    )


def outline(sides, color=None, transforms=None, name=None) -> GeometryDescriptor:
    """Line geometry: two vertices per side, no triangulation."""
    positions: list[float] = []
    for side in sides:
        pts = [_point(p) for p in side]
        if len(pts) != 2:
            logger.warning(f"outline side with {len(pts)} points skipped")
            continue
        positions.extend(pts[0])
        positions.extend(pts[1])

    rgba = _rgba(color) or GRAY
    return GeometryDescriptor(
        kind=GeometryKind.OUTLINE,
        positions=positions,
        colors=list(rgba) * (len(positions) // 3),
        transforms=_transforms(transforms),
        name=name,
    )


def _buffers(item: Mapping, kind: GeometryKind, name) -> GeometryDescriptor:
    positions = flatten(item["positions"])
    if len(positions) % 3:
        logger.warning(f"positions: {len(positions)} values is not a multiple of 3, truncated")
        del positions[len(positions) - len(positions) % 3:]
    count = len(positions) // 3

    if (colors := item.get("colors")) is not None:
        colors = _repair(colors, count, 4, GRAY, "colors")
    else:
        colors = list(_rgba(item.get("color")) or GRAY) * count

    normals = indices = None
    if kind == GeometryKind.SOLID:
        normals = _repair(item.get("normals"), count, 3, UP, "normals")
        indices = _indices(item.get("indices"), count)

    return GeometryDescriptor(
        kind=kind,
        positions=positions,
        normals=normals,
        indices=indices,
        colors=colors,
        transforms=_transforms(item.get("transforms")),
        name=name,
    )


def _from_mapping(item: Mapping, name) -> GeometryDescriptor:
    try:
        kind = GeometryKind(item.get("kind"))
    except ValueError:
        raise GeometryError(f"Unknown geometry kind {item.get('kind') !r}") from None
    name = item.get("name", name)

    if "positions" in item:
        return _buffers(item, kind, name)
    if kind == GeometryKind.SOLID:
        return solid(item.get("polygons", ()), item.get("color"), item.get("transforms"), name)
    return outline(item.get("sides", ()), item.get("color"), item.get("transforms"), name)


def _edge_points(edge, segments: int) -> list:
    if edge.geom_type == GeomType.LINE:
        return [edge.position_at(0), edge.position_at(1)]
    return [edge.position_at(i / segments) for i in range(segments + 1)]


def _from_shape(shape: Shape, config: Config, name) -> GeometryDescriptor:
    name = name or getattr(shape, "label", None) or None
    color = getattr(shape, "color", None)

    dim = getattr(shape, "_dim", None)
    if dim is None:
        # mixed compound
        dim = 3 if shape.solids() else 2

    if dim == 3:
        vertices, triangles = shape.tessellate(config.tolerance, config.angular_tolerance)
        polygons = [[vertices[i] for i in tri] for tri in triangles]
        return solid(polygons, color, name=name)

    sides = []
    for edge in shape.edges():
        pts = _edge_points(edge, config.outline_segments)
        sides.extend(zip(pts, pts[1:]))
    return outline(sides, color, name=name)


def _items(result, name=None) -> Iterator[tuple[Any, str | None]]:
    if result is None:
        return
    if isinstance(result, (list, tuple)):
        for r in result:
            yield from _items(r)
    elif isinstance(result, Mapping) and not (_GEOMETRY_KEYS & result.keys()):
        # named map
        for k, r in result.items():
            yield from _items(r, str(k))
    else:
        yield result, name


def normalize(result, config: Config | None = None) -> list[GeometryDescriptor]:
    """Convert a script's return value into geometry descriptors."""
    config = config or Config()
    res = []
    for item, name in _items(result):
        if isinstance(item, Shape):
            desc = _from_shape(item, config, name)
        elif isinstance(item, Mapping):
            desc = _from_mapping(item, name)
        else:
            raise GeometryError(f"Cannot display a {type(item).__name__}")
        res.append(desc)
        logger.debug(
            f"{desc.kind.value} {desc.name or len(res)}: {desc.vertex_count} vertices"
        )
    return res
