"""Absolute + relative acceptance windows for m/z and retention time.

A window accepts `b` against reference `a` when

    |a - b| <= absolute + relative * scale(a, b)

and reports a closeness in [0, 1] that is 1 at equality and decays linearly to 0
at the window edge. All functions accept scalars or numpy arrays (broadcasting);
scalar inputs return plain `bool`/`float`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from .errors import ConfigurationError


def _check_component(name: str, value: float) -> None:
    if not math.isfinite(float(value)) or float(value) < 0:
        raise ConfigurationError(f"{name} must be finite and >= 0 (got {value!r}).")


def _unwrap(arr: np.ndarray) -> Any:
    if np.ndim(arr) == 0:
        return arr.item()
    return arr


@dataclass(frozen=True)
class ToleranceWindow:
    absolute: float = 0.0
    relative: float = 0.0

    def __post_init__(self) -> None:
        _check_component(f"{type(self).__name__}.absolute", self.absolute)
        _check_component(f"{type(self).__name__}.relative", self.relative)

    def reference_scale(self, a: Any, b: Any) -> np.ndarray:
        raise NotImplementedError

    def width(self, a: Any, b: Any) -> np.ndarray:
        """Half-width of the window around `a` (absolute term when the scale is 0)."""
        scale = self.reference_scale(np.asarray(a, dtype=float), np.asarray(b, dtype=float))
        with np.errstate(invalid="ignore"):
            scale = np.where(scale > 0, scale, 0.0)
        return float(self.absolute) + float(self.relative) * scale

    def _diff_width_ok(self, a: Any, b: Any):
        a = np.asarray(a, dtype=float)
        b = np.asarray(b, dtype=float)
        finite = np.isfinite(a) & np.isfinite(b)
        with np.errstate(invalid="ignore"):
            diff = np.abs(a - b)
            width = self.width(a, b)
            ok = finite & (diff <= width)
        return diff, width, ok

    def accepts(self, a: Any, b: Any) -> Any:
        _, _, ok = self._diff_width_ok(a, b)
        return _unwrap(np.asarray(ok, dtype=bool))

    def closeness(self, a: Any, b: Any) -> Any:
        diff, width, ok = self._diff_width_ok(a, b)
        with np.errstate(divide="ignore", invalid="ignore"):
            close = np.where(width > 0, 1.0 - diff / width, 0.0)
        close = np.where(diff == 0, 1.0, close)
        close = np.where(ok, np.clip(close, 0.0, 1.0), 0.0)
        return _unwrap(np.asarray(close, dtype=float))


@dataclass(frozen=True)
class MZTolerance(ToleranceWindow):
    """m/z window; `relative` is in ppm of the larger of the two values."""

    def reference_scale(self, a: Any, b: Any) -> np.ndarray:
        with np.errstate(invalid="ignore"):
            return np.maximum(np.abs(a), np.abs(b)) * 1e-6

    @property
    def ppm(self) -> float:
        return float(self.relative)


@dataclass(frozen=True)
class RTTolerance(ToleranceWindow):
    """Retention-time window; `relative` is a fraction of the reference RT."""

    def reference_scale(self, a: Any, b: Any) -> np.ndarray:
        return np.abs(a) + np.zeros_like(b)


def mz_tolerance(absolute: float = 0.0, ppm: float = 0.0) -> MZTolerance:
    return MZTolerance(absolute=absolute, relative=ppm)


def rt_tolerance(absolute: float = 0.0, relative: float = 0.0) -> RTTolerance:
    return RTTolerance(absolute=absolute, relative=relative)


def tolerance_from_dict(kind: str, obj: Any) -> ToleranceWindow:
    """Build a window from a config mapping (`absolute` plus `ppm` or `relative`)."""
    if isinstance(obj, ToleranceWindow):
        return obj
    if not isinstance(obj, dict):
        raise ConfigurationError(f"{kind} tolerance must be a mapping, got {type(obj).__name__}.")
    extra = set(obj) - {"absolute", "relative", "ppm"}
    if extra:
        raise ConfigurationError(f"Unknown {kind} tolerance keys: {sorted(extra)}")
    absolute = float(obj.get("absolute", 0.0))
    if kind == "mz":
        return MZTolerance(absolute=absolute, relative=float(obj.get("ppm", obj.get("relative", 0.0))))
    if kind == "rt":
        return RTTolerance(absolute=absolute, relative=float(obj.get("relative", 0.0)))
    raise ConfigurationError(f"Unsupported tolerance kind: {kind!r}")


__all__ = [
    "ToleranceWindow",
    "MZTolerance",
    "RTTolerance",
    "mz_tolerance",
    "rt_tolerance",
    "tolerance_from_dict",
]
