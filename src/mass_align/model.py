"""Value types for join alignment: feature records, rows and the master table."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import RecordError


@dataclass(frozen=True)
class IsotopePattern:
    """Centroided isotope envelope (m/z ascending is not required)."""

    mz: Tuple[float, ...]
    intensity: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "mz", tuple(float(x) for x in self.mz))
        object.__setattr__(self, "intensity", tuple(float(x) for x in self.intensity))
        if len(self.mz) != len(self.intensity):
            raise ValueError("Isotope pattern m/z and intensity must have the same length.")

    def __len__(self) -> int:
        return len(self.mz)

    @property
    def highest_intensity(self) -> float:
        return max(self.intensity) if self.intensity else 0.0

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        return np.asarray(self.mz, dtype=float), np.asarray(self.intensity, dtype=float)


@dataclass(frozen=True)
class FeatureRecord:
    """One detected feature from one run. Immutable."""

    source_id: str
    mz: float
    rt: float
    charge: int = 0  # 0 = unknown
    isotope_pattern: Optional[IsotopePattern] = None
    identities: Tuple[str, ...] = ()
    feature_id: Optional[str] = None
    height: float = 0.0

    def __post_init__(self) -> None:
        # Ordered set: keep first occurrence of each label.
        object.__setattr__(self, "identities", tuple(dict.fromkeys(str(x) for x in self.identities)))
        object.__setattr__(self, "charge", int(self.charge))

    @property
    def is_valid(self) -> bool:
        mz = float(self.mz)
        rt = float(self.rt)
        return math.isfinite(mz) and math.isfinite(rt) and mz > 0 and rt >= 0

    def check(self) -> "FeatureRecord":
        if not self.is_valid:
            raise RecordError(
                f"{self.source_id}:{self.feature_id}: invalid m/z or RT (mz={self.mz!r}, rt={self.rt!r})."
            )
        return self


@dataclass
class Row:
    """Cross-run cluster of records; at most one member per run."""

    row_id: int
    members: Dict[str, FeatureRecord] = field(default_factory=dict)
    avg_mz: float = float("nan")
    avg_rt: float = float("nan")

    def add(self, record: FeatureRecord) -> None:
        if record.source_id in self.members:
            raise ValueError(f"Row {self.row_id} already holds a feature from run {record.source_id!r}.")
        self.members[record.source_id] = record
        self._update_averages()

    def _update_averages(self) -> None:
        mz = np.fromiter((r.mz for r in self.members.values()), dtype=float)
        rt = np.fromiter((r.rt for r in self.members.values()), dtype=float)
        self.avg_mz = float(mz.mean()) if mz.size else float("nan")
        self.avg_rt = float(rt.mean()) if rt.size else float("nan")

    def __len__(self) -> int:
        return len(self.members)

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.avg_mz) and math.isfinite(self.avg_rt) and self.avg_mz > 0 and self.avg_rt >= 0

    @property
    def charge(self) -> int:
        for record in self.members.values():
            if record.charge != 0:
                return record.charge
        return 0

    @property
    def identities(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for record in self.members.values():
            for label in record.identities:
                seen.setdefault(label, None)
        return tuple(seen)

    @property
    def isotope_pattern(self) -> Optional[IsotopePattern]:
        best: Optional[FeatureRecord] = None
        for record in self.members.values():
            if record.isotope_pattern is None:
                continue
            if best is None or record.height > best.height:
                best = record
        return None if best is None else best.isotope_pattern


@dataclass(frozen=True)
class CandidatePair:
    row_id: int
    record_index: int
    score: float
    mz_diff: float
    rt_diff: float

    @property
    def sort_key(self) -> Tuple[float, float, float, int, int]:
        return (-self.score, self.mz_diff, self.rt_diff, self.row_id, self.record_index)


class MasterTable:
    """Ordered rows of the aligned feature list."""

    def __init__(self, name: str = "Aligned feature list") -> None:
        self.name = name
        self._rows: List[Row] = []
        self._index: Dict[int, int] = {}
        self._next_id = 0

    def new_row(self, record: FeatureRecord) -> Row:
        row = Row(row_id=self._next_id)
        row.add(record)
        self._index[row.row_id] = len(self._rows)
        self._rows.append(row)
        self._next_id += 1
        return row

    def row(self, row_id: int) -> Row:
        return self._rows[self._index[row_id]]

    @property
    def rows(self) -> Sequence[Row]:
        return tuple(self._rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def source_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for row in self._rows:
            for sid in row.members:
                seen.setdefault(sid, None)
        return list(seen)

    def membership(self) -> List[Tuple[int, Tuple[Tuple[str, Optional[str], float, float], ...]]]:
        """Row ids with their members, in table order (used for reproducibility checks)."""
        return [
            (row.row_id, tuple((sid, r.feature_id, r.mz, r.rt) for sid, r in row.members.items()))
            for row in self._rows
        ]

    def to_frame(self) -> pd.DataFrame:
        """One line per row; per-run columns are `<run>:feature_id|mz|rt`."""
        runs = self.source_ids
        records = []
        for row in self._rows:
            rec = {
                "row_id": row.row_id,
                "avg_mz": row.avg_mz,
                "avg_rt": row.avg_rt,
                "charge": row.charge,
                "identities": ";".join(row.identities),
                "n_members": len(row),
            }
            for sid in runs:
                member = row.members.get(sid)
                rec[f"{sid}:feature_id"] = None if member is None else member.feature_id
                rec[f"{sid}:mz"] = np.nan if member is None else float(member.mz)
                rec[f"{sid}:rt"] = np.nan if member is None else float(member.rt)
            records.append(rec)
        columns = ["row_id", "avg_mz", "avg_rt", "charge", "identities", "n_members"]
        for sid in runs:
            columns += [f"{sid}:feature_id", f"{sid}:mz", f"{sid}:rt"]
        return pd.DataFrame(records, columns=columns)


__all__ = ["IsotopePattern", "FeatureRecord", "Row", "CandidatePair", "MasterTable"]
