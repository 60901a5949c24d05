"""
Parameter definitions and value resolution.

A script declares its parameters by returning a list of mappings from
``get_parameter_definitions()``::

    def get_parameter_definitions():
        return [
            dict(name="size", type="number", initial=10, min=1, max=50),
            dict(name="rounded", type="checkbox", checked=True),
            dict(name="finish", type="choice", values=["matte", "gloss"]),
        ]

The effective value of each parameter is the script's default, overridden
by a persisted value whenever that value can be coerced to the parameter's
type.
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class _missing:
    pass


class ParameterKind(str, Enum):
    NUMBER = "number"
    FLOAT = "float"
    SLIDER = "slider"
    INT = "int"
    CHECKBOX = "checkbox"
    CHOICE = "choice"
    COLOR = "color"
    TEXT = "text"
    DATE = "date"
    EMAIL = "email"
    PASSWORD = "password"
    URL = "url"
    # any type this module does not know; values pass through untouched
    OTHER = "other"

    @property
    def numeric(self) -> bool:
        return self in (ParameterKind.NUMBER, ParameterKind.FLOAT, ParameterKind.SLIDER)


@dataclass(frozen=True)
class ParameterDefinition:
    name: str
    kind: ParameterKind
    type: str = ""
    initial: Any = None
    caption: str | None = None
    min: float | None = None
    max: float | None = None
    step: float | None = None
    checked: bool | None = None
    values: tuple | None = None
    captions: tuple | None = None

    @classmethod
    def from_dict(cls, data: Mapping) -> ParameterDefinition:
        """Build a definition from the mapping a script returned.

        Raises `ValueError` if the mapping does not describe a parameter.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Parameter definition is not a mapping: {data !r}")
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Parameter definition without a name: {data !r}")
        type_ = data.get("type") or "text"
        if not isinstance(type_, str):
            raise ValueError(f"{name}: type must be a string, not {type_ !r}")
        try:
            kind = ParameterKind(type_)
        except ValueError:
            logger.debug(f"{name}: unknown parameter type {type_ !r}, passed through")
            kind = ParameterKind.OTHER

        values = data.get("values")
        if values is not None:
            if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)):
                raise ValueError(f"{name}: 'values' must be a list")
            values = tuple(values)
        captions = data.get("captions")
        if captions is not None:
            captions = tuple(str(c) for c in captions)
        caption = data.get("caption")

        return cls(
            name=name,
            kind=kind,
            type=type_,
            initial=data.get("initial"),
            caption=None if caption is None else str(caption),
            min=data.get("min"),
            max=data.get("max"),
            step=data.get("step"),
            checked=data.get("checked"),
            values=values,
            captions=captions,
        )

    def to_dict(self) -> dict:
        res = dict(name=self.name, type=self.type or self.kind.value)
        for k in ("initial", "caption", "min", "max", "step", "checked"):
            if (v := getattr(self, k)) is not None:
                res[k] = v
        if self.values is not None:
            res["values"] = list(self.values)
        if self.captions is not None:
            res["captions"] = list(self.captions)
        return res


def definitions_from(data: Any) -> list[ParameterDefinition]:
    """Validate what a script's metadata function returned.

    The result is all-or-nothing: an entry that is not a mapping or has
    no name, or two entries with the same name, raise `ValueError`.
    Unknown types are kept as `ParameterKind.OTHER`.
    """
    if isinstance(data, (str, bytes, Mapping)) or not isinstance(data, (list, tuple)):
        raise ValueError(f"Parameter definitions must be a list, not {type(data).__name__}")
    res = []
    seen = set()
    for item in data:
        pd = ParameterDefinition.from_dict(item)
        if pd.name in seen:
            raise ValueError(f"Duplicate parameter {pd.name !r}")
        seen.add(pd.name)
        res.append(pd)
    return res


### Coercion

_FLOAT_RE = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_INT_RE = re.compile(r"\s*([+-]?\d+)")
_HEX_RE = re.compile(r"#([0-9a-fA-F]{3}|[0-9a-fA-F]{4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})")


def _number(value, integer: bool = False):
    raw = value
    if isinstance(value, str):
        # leading-number parse: "12mm" is 12, "abc" is nothing
        m = (_INT_RE if integer else _FLOAT_RE).match(value)
        if m is None:
            return _missing
        value = m[1]
    try:
        res = float(value)
    except (TypeError, ValueError, OverflowError):
        # OverflowError: an int too large for a float
        return _missing
    if not math.isfinite(res):
        return _missing
    if integer:
        return math.trunc(res)
    return raw if isinstance(raw, (int, float)) else res


def _checkbox(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _choice(pd: ParameterDefinition, value):
    if pd.values is None:
        return value
    sv = str(value)
    for v in pd.values:
        if str(v) == sv:
            return v
    return value


def coerce_color(value):
    """Turn a color into ``[r, g, b, a]`` with channels in 0…1.

    Accepts a 3- or 4-element numeric list (0…255 values are scaled
    down when any channel exceeds 1) or a ``#rgb``, ``#rgba``,
    ``#rrggbb`` or ``#rrggbbaa`` string. Anything else is returned as-is.
    """
    if isinstance(value, (list, tuple)):
        try:
            rgba = [float(v) for v in value]
        except (TypeError, ValueError, OverflowError):
            return value
        if len(rgba) not in (3, 4) or not all(math.isfinite(v) for v in rgba):
            return value
        if any(v > 1 for v in rgba):
            rgba = [v / 255 for v in rgba]
        if len(rgba) == 3:
            rgba.append(1.0)
        return rgba

    if not isinstance(value, str):
        return value
    m = _HEX_RE.fullmatch(value.strip())
    if m is None:
        return value

    digits = m[1]
    if len(digits) in (3, 4):
        digits = "".join(c + c for c in digits)
    channels = [int(digits[i:i + 2], 16) / 255 for i in range(0, len(digits), 2)]
    if len(channels) == 3:
        channels.append(1.0)
    return channels


def coerce(pd: ParameterDefinition, value):
    """Coerce a value to the type of a parameter.

    Returns ``_missing`` if the value cannot be used.
    """
    if value is None:
        return _missing
    kind = pd.kind
    if kind == ParameterKind.COLOR:
        return coerce_color(value)
    if kind == ParameterKind.CHECKBOX:
        return _checkbox(value)
    if kind == ParameterKind.INT:
        return _number(value, integer=True)
    if kind.numeric:
        return _number(value)
    if kind == ParameterKind.CHOICE:
        return _choice(pd, value)
    return value


def _default(pd: ParameterDefinition):
    if pd.kind == ParameterKind.CHECKBOX:
        return bool(pd.checked) if pd.checked is not None else False
    if pd.kind == ParameterKind.CHOICE and pd.initial is None:
        if pd.values:
            return coerce(pd, pd.values[0])
        return _missing
    return coerce(pd, pd.initial)


def resolve_parameters(
    definitions: list[ParameterDefinition],
    stored: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Compute the effective value of every parameter.

    Parameters without a usable default and without a usable stored
    value are left out of the result. Neither argument is modified.
    """
    stored = stored or {}
    res: dict[str, Any] = {}

    for pd in definitions:
        if (val := _default(pd)) is not _missing:
            res[pd.name] = val

    for pd in definitions:
        if pd.name not in stored:
            continue
        if (val := coerce(pd, stored[pd.name])) is not _missing:
            res[pd.name] = val

    return res
