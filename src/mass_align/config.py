"""Alignment configuration: dataclass options, validation and JSON/YAML loading."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigurationError
from .isotopes import IsotopeComparison
from .tolerance import MZTolerance, RTTolerance, tolerance_from_dict


@dataclass
class AlignConfig:
    """Options of the join aligner."""

    # Acceptance windows. m/z relative term is ppm, RT relative term is a fraction.
    mz_tolerance: MZTolerance = field(default_factory=lambda: MZTolerance(absolute=0.001, relative=5.0))
    rt_tolerance: RTTolerance = field(default_factory=lambda: RTTolerance(absolute=0.1, relative=0.0))
    # Score for a perfectly matching value in each dimension.
    mz_weight: float = 1.0
    rt_weight: float = 1.0
    # Hard constraints
    require_same_charge: bool = False
    require_same_identity: bool = False
    # None disables the isotope-pattern term.
    isotope_comparison: Optional[IsotopeComparison] = None
    # Output feature list name
    name: str = "Aligned feature list"
    # Seed from the largest table instead of the first (stable on ties).
    largest_first: bool = False
    # Candidate generation: joblib workers (1 = serial, -1 = all cores) and
    # number of records scored per vectorised block.
    n_jobs: int = 1
    chunk_size: int = 2048

    def validate(self) -> "AlignConfig":
        if not isinstance(self.mz_tolerance, MZTolerance):
            raise ConfigurationError("mz_tolerance must be an MZTolerance.")
        if not isinstance(self.rt_tolerance, RTTolerance):
            raise ConfigurationError("rt_tolerance must be an RTTolerance.")
        for name in ("mz_weight", "rt_weight"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be finite and >= 0 (got {value!r}).")
        if float(self.mz_weight) == 0 and float(self.rt_weight) == 0:
            raise ConfigurationError("mz_weight and rt_weight are both 0; every candidate would tie.")
        if self.isotope_comparison is not None and not isinstance(self.isotope_comparison, IsotopeComparison):
            raise ConfigurationError("isotope_comparison must be an IsotopeComparison or None.")
        if int(self.n_jobs) == 0:
            raise ConfigurationError("n_jobs must be nonzero (1 = serial, -1 = all cores).")
        if int(self.chunk_size) < 1:
            raise ConfigurationError("chunk_size must be >= 1.")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Plain-JSON view (the isotope similarity function is reported by name only)."""
        iso = self.isotope_comparison
        return {
            "mz_tolerance": {"absolute": self.mz_tolerance.absolute, "ppm": self.mz_tolerance.relative},
            "rt_tolerance": {"absolute": self.rt_tolerance.absolute, "relative": self.rt_tolerance.relative},
            "mz_weight": float(self.mz_weight),
            "rt_weight": float(self.rt_weight),
            "require_same_charge": bool(self.require_same_charge),
            "require_same_identity": bool(self.require_same_identity),
            "isotope_comparison": None
            if iso is None
            else {
                "weight": iso.weight,
                "mz_tolerance": {"absolute": iso.mz_tolerance.absolute, "ppm": iso.mz_tolerance.relative},
                "noise_level": iso.noise_level,
                "min_score": iso.min_score,
                "similarity": None if iso.similarity is None else getattr(iso.similarity, "__name__", repr(iso.similarity)),
            },
            "name": self.name,
            "largest_first": bool(self.largest_first),
            "n_jobs": int(self.n_jobs),
            "chunk_size": int(self.chunk_size),
        }


def _isotope_from_dict(obj: Any) -> Optional[IsotopeComparison]:
    if obj is None or obj is False:
        return None
    if obj is True:
        return IsotopeComparison()
    if not isinstance(obj, dict):
        raise ConfigurationError("isotope_comparison must be a mapping, true/false or null.")
    extra = set(obj) - {"weight", "mz_tolerance", "noise_level", "min_score"}
    if extra:
        raise ConfigurationError(f"Unknown isotope_comparison keys: {sorted(extra)}")
    kwargs: Dict[str, Any] = {}
    if "mz_tolerance" in obj:
        kwargs["mz_tolerance"] = tolerance_from_dict("mz", obj["mz_tolerance"])
    for key in ("weight", "noise_level", "min_score"):
        if key in obj:
            kwargs[key] = float(obj[key])
    return IsotopeComparison(**kwargs)


def config_from_dict(obj: Dict[str, Any]) -> AlignConfig:
    if not isinstance(obj, dict):
        raise ConfigurationError("Alignment config must be a mapping.")
    known = {f.name for f in fields(AlignConfig)}
    extra = set(obj) - known
    if extra:
        raise ConfigurationError(f"Unknown alignment config keys: {sorted(extra)}")
    kwargs: Dict[str, Any] = dict(obj)
    if "mz_tolerance" in kwargs:
        kwargs["mz_tolerance"] = tolerance_from_dict("mz", kwargs["mz_tolerance"])
    if "rt_tolerance" in kwargs:
        kwargs["rt_tolerance"] = tolerance_from_dict("rt", kwargs["rt_tolerance"])
    if "isotope_comparison" in kwargs:
        kwargs["isotope_comparison"] = _isotope_from_dict(kwargs["isotope_comparison"])
    return AlignConfig(**kwargs).validate()


def _safe_yaml_load(path: Path) -> Any:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install `pyyaml` or provide a JSON config."
        ) from exc
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def load_config(path: Path) -> AlignConfig:
    """Load alignment options from YAML or JSON."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    suffix = path.suffix.lower().strip()
    if suffix in {".yaml", ".yml"}:
        obj = _safe_yaml_load(path)
    elif suffix == ".json":
        obj = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported config type {suffix!r}; expected .yaml/.yml or .json")
    if isinstance(obj, dict) and "alignment" in obj:
        obj = obj["alignment"]
    return config_from_dict(obj or {})


__all__ = ["AlignConfig", "config_from_dict", "load_config"]
