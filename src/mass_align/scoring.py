"""Match score of a (row, feature record) pair.

score = mz_weight * closeness_mz + rt_weight * closeness_rt [+ isotope term]

`None` means the pair is not admissible: a hard constraint failed, a tolerance
window rejected it, or one side carries non-finite / out-of-domain values.
"""

from __future__ import annotations

from typing import Callable, List, Optional

from .config import AlignConfig
from .isotopes import IsotopeComparison
from .model import CandidatePair, FeatureRecord, Row

Gate = Callable[[Row, FeatureRecord], bool]


def run_gate(row: Row, record: FeatureRecord) -> bool:
    """A row takes at most one feature per run."""
    return record.source_id not in row.members


def charge_gate(row: Row, record: FeatureRecord) -> bool:
    """Unknown charge (0) on either side is compatible."""
    a, b = row.charge, record.charge
    return a == 0 or b == 0 or a == b


def identity_gate(row: Row, record: FeatureRecord) -> bool:
    """Rows without identities never block; otherwise the sets must overlap."""
    row_ids = row.identities
    if not row_ids or not record.identities:
        return True
    return not set(row_ids).isdisjoint(record.identities)


class Scorer:
    """Pure scoring function configured from `AlignConfig`."""

    def __init__(self, config: AlignConfig):
        self.config = config
        self.mz_tolerance = config.mz_tolerance
        self.rt_tolerance = config.rt_tolerance
        self.mz_weight = float(config.mz_weight)
        self.rt_weight = float(config.rt_weight)
        self.isotopes: Optional[IsotopeComparison] = config.isotope_comparison
        gates: List[Gate] = [run_gate]
        if config.require_same_charge:
            gates.append(charge_gate)
        if config.require_same_identity:
            gates.append(identity_gate)
        self.gates = tuple(gates)

    def score(self, row: Row, record: FeatureRecord) -> Optional[float]:
        if not record.is_valid or not row.is_valid:
            return None
        for gate in self.gates:
            if not gate(row, record):
                return None
        if not self.mz_tolerance.accepts(row.avg_mz, record.mz):
            return None
        if not self.rt_tolerance.accepts(row.avg_rt, record.rt):
            return None

        total = self.mz_weight * self.mz_tolerance.closeness(row.avg_mz, record.mz)
        total += self.rt_weight * self.rt_tolerance.closeness(row.avg_rt, record.rt)

        if self.isotopes is not None:
            row_pattern = row.isotope_pattern
            rec_pattern = record.isotope_pattern
            if row_pattern is not None and rec_pattern is not None:
                similarity = self.isotopes.compare(row_pattern, rec_pattern)
                if self.isotopes.min_score > 0 and similarity < self.isotopes.min_score:
                    return None
                total += self.isotopes.weight * similarity
        return float(total)

    def candidate(self, row: Row, record: FeatureRecord, record_index: int) -> Optional[CandidatePair]:
        value = self.score(row, record)
        if value is None:
            return None
        return CandidatePair(
            row_id=row.row_id,
            record_index=int(record_index),
            score=value,
            mz_diff=abs(row.avg_mz - float(record.mz)),
            rt_diff=abs(row.avg_rt - float(record.rt)),
        )


__all__ = ["Scorer", "Gate", "run_gate", "charge_gate", "identity_gate"]
