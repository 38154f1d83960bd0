"""Isotope-pattern similarity used as an optional alignment score term.

Both patterns are scaled to a highest peak of 1. Peaks below the noise level are
dropped, the remaining peaks are merged into one m/z-sorted list (second pattern
with negative intensities) and neighbours within the isotope m/z tolerance are
collapsed by summing their signed intensities. Each merged peak then carries the
intensity left unexplained by the other pattern; the similarity is

    prod(1 - min(|residual|, 1))

which is 1 for identical envelopes and drops to 0 as soon as one peak is missing
entirely from the other pattern.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .model import IsotopePattern
from .tolerance import MZTolerance

SimilarityFn = Callable[[IsotopePattern, IsotopePattern], float]


def _normalized(pattern: IsotopePattern) -> Tuple[np.ndarray, np.ndarray]:
    mz, inten = pattern.as_arrays()
    top = float(inten.max()) if inten.size else 0.0
    if top <= 0 or not math.isfinite(top):
        return mz[:0], inten[:0]
    return mz, inten / top


def isotope_pattern_similarity(
    a: IsotopePattern,
    b: IsotopePattern,
    *,
    mz_tolerance: Optional[MZTolerance] = None,
    noise_level: float = 0.0,
) -> float:
    """Similarity of two isotope patterns in [0, 1]."""
    tol = mz_tolerance or MZTolerance(absolute=0.001, relative=5.0)
    pattern_top = max(a.highest_intensity, b.highest_intensity)

    mz_a, int_a = _normalized(a)
    mz_b, int_b = _normalized(b)
    if mz_a.size == 0 or mz_b.size == 0:
        return 0.0

    keep_a = int_a * pattern_top >= noise_level
    keep_b = int_b * pattern_top >= noise_level
    mz = np.concatenate([mz_a[keep_a], mz_b[keep_b]])
    inten = np.concatenate([int_a[keep_a], -int_b[keep_b]])
    order = np.argsort(mz, kind="stable")
    peaks: List[List[float]] = [[float(mz[i]), float(inten[i])] for i in order]

    # Collapse neighbours until no adjacent pair is within tolerance.
    changed = True
    while changed:
        changed = False
        for i in range(len(peaks) - 1):
            cur, nxt = peaks[i], peaks[i + 1]
            if tol.accepts(cur[0], nxt[0]):
                peaks[i] = [cur[0] + (nxt[0] - cur[0]) / 2.0, cur[1] + nxt[1]]
                del peaks[i + 1]
                changed = True
                break

    result = 1.0
    for _, residual in peaks:
        result *= 1.0 - min(abs(residual), 1.0)
    return float(result)


@dataclass(frozen=True)
class IsotopeComparison:
    """Isotope-pattern term of the alignment score.

    `similarity` may be replaced by any function returning a value in [0, 1];
    by default `isotope_pattern_similarity` is used with this object's tolerance
    and noise level. Pairs whose similarity falls below `min_score` are not
    admissible (0 disables the gate).
    """

    weight: float = 1.0
    mz_tolerance: MZTolerance = field(default_factory=lambda: MZTolerance(absolute=0.001, relative=5.0))
    noise_level: float = 0.0
    min_score: float = 0.0
    similarity: Optional[SimilarityFn] = None

    def __post_init__(self) -> None:
        if not math.isfinite(float(self.weight)) or float(self.weight) < 0:
            raise ConfigurationError(f"Isotope weight must be finite and >= 0 (got {self.weight!r}).")
        if not math.isfinite(float(self.noise_level)) or float(self.noise_level) < 0:
            raise ConfigurationError(f"Isotope noise level must be finite and >= 0 (got {self.noise_level!r}).")
        if not (0.0 <= float(self.min_score) <= 1.0):
            raise ConfigurationError(f"Isotope min_score must be in [0, 1] (got {self.min_score!r}).")

    def compare(self, a: IsotopePattern, b: IsotopePattern) -> float:
        if self.similarity is not None:
            value = float(self.similarity(a, b))
        else:
            value = isotope_pattern_similarity(a, b, mz_tolerance=self.mz_tolerance, noise_level=self.noise_level)
        if not math.isfinite(value):
            return 0.0
        return min(max(value, 0.0), 1.0)


__all__ = ["IsotopeComparison", "isotope_pattern_similarity", "SimilarityFn"]
