"""Join aligner: incremental greedy merge of per-run feature tables.

The first table (or the largest, with `largest_first`) seeds the master table
with one row per feature. Every further table is merged in one pass:

1. score every admissible (row, feature) pair; rejects are dropped as soon as
   they are computed, in blocks of `chunk_size` features
2. sort all candidates by score, then smaller m/z difference, smaller RT
   difference, smaller row id and earlier feature position
3. walk the sorted list once and commit a pair when neither side has been used
   in this pass
4. features left over become new rows, in input order

Passes are sequential; only step 1 may run in joblib worker threads. The commit
step runs on the calling thread and is the only place the master table changes.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .config import AlignConfig
from .errors import AlignmentCancelled
from .lcms_utils import SchemaConfig, records_from_frame
from .model import CandidatePair, FeatureRecord, MasterTable, Row
from .scoring import Scorer

logger = logging.getLogger(__name__)

FINISHED = "finished"
CANCELLED = "cancelled"


@dataclass
class PassReport:
    table_index: int
    n_records: int
    n_candidates: int = 0
    n_matched: int = 0
    n_new_rows: int = 0
    total_score: float = 0.0
    execution_time: float = 0.0


@dataclass
class AlignmentResult:
    table: MasterTable
    status: str
    passes: List[PassReport] = field(default_factory=list)
    n_invalid_records: int = 0
    execution_time: float = 0.0

    @property
    def finished(self) -> bool:
        return self.status == FINISHED


def assign_greedy(candidates: Sequence[CandidatePair]) -> List[CandidatePair]:
    """Best-first exclusive selection; returns the chosen pairs in commit order."""
    used_rows: Set[int] = set()
    used_records: Set[int] = set()
    chosen: List[CandidatePair] = []
    for cand in sorted(candidates, key=lambda c: c.sort_key):
        if cand.row_id in used_rows or cand.record_index in used_records:
            continue
        chosen.append(cand)
        used_rows.add(cand.row_id)
        used_records.add(cand.record_index)
    return chosen


def _count_invalid(records: Sequence[FeatureRecord]) -> int:
    return sum(1 for r in records if not r.is_valid)


class JoinAligner:
    """Aligns an ordered list of feature tables into one master table."""

    def __init__(
        self,
        config: Optional[AlignConfig] = None,
        *,
        should_cancel: Optional[Callable[[], bool]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        self.config = (config or AlignConfig()).validate()
        self.scorer = Scorer(self.config)
        self.should_cancel = should_cancel
        self.on_progress = on_progress
        self.progress = 0.0
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request a stop; honoured before the next merge pass starts."""
        self._cancel.set()

    def _check_cancelled(self) -> None:
        if self._cancel.is_set() or (self.should_cancel is not None and self.should_cancel()):
            raise AlignmentCancelled("Alignment cancelled")

    def _report_progress(self, done: int, total: int) -> None:
        fraction = float(done) / float(total) if total else 1.0
        self.progress = max(self.progress, min(fraction, 1.0))
        if self.on_progress is None:
            return
        if done < total:
            self.on_progress(self.progress)
            return
        # Every table is committed; a late stop request no longer changes the outcome.
        try:
            self.on_progress(self.progress)
        except AlignmentCancelled:
            logger.debug("cancellation requested after the last table; run already finished")

    def seed(self, records: Sequence[FeatureRecord]) -> MasterTable:
        master = MasterTable(name=self.config.name)
        for record in records:
            master.new_row(record)
        return master

    def _score_block(
        self,
        rows: Sequence[Row],
        row_mz: np.ndarray,
        row_rt: np.ndarray,
        records: Sequence[FeatureRecord],
        start: int,
        stop: int,
    ) -> List[CandidatePair]:
        rec_mz = np.fromiter((r.mz for r in records[start:stop]), dtype=float, count=stop - start)
        rec_rt = np.fromiter((r.rt for r in records[start:stop]), dtype=float, count=stop - start)
        # Vectorised window prefilter; exact scoring and hard constraints below.
        mask = self.config.mz_tolerance.accepts(row_mz[:, np.newaxis], rec_mz[np.newaxis, :])
        mask &= self.config.rt_tolerance.accepts(row_rt[:, np.newaxis], rec_rt[np.newaxis, :])
        idx_row, idx_rec = np.nonzero(mask)

        out: List[CandidatePair] = []
        for i, j in zip(idx_row.tolist(), idx_rec.tolist()):
            cand = self.scorer.candidate(rows[i], records[start + j], start + j)
            if cand is not None:
                out.append(cand)
        logger.debug("records %d-%d: %d windowed pairs, %d admissible", start, stop, len(idx_row), len(out))
        return out

    def generate_candidates(self, master: MasterTable, records: Sequence[FeatureRecord]) -> List[CandidatePair]:
        """All admissible (row, record) pairs; `record_index` is the position in `records`."""
        rows = list(master)
        n = len(records)
        if not rows or n == 0:
            return []
        row_mz = np.fromiter((row.avg_mz for row in rows), dtype=float, count=len(rows))
        row_rt = np.fromiter((row.avg_rt for row in rows), dtype=float, count=len(rows))

        chunk = int(self.config.chunk_size)
        blocks: List[Tuple[int, int]] = [(s, min(s + chunk, n)) for s in range(0, n, chunk)]
        if int(self.config.n_jobs) != 1 and len(blocks) > 1:
            results = Parallel(n_jobs=int(self.config.n_jobs), prefer="threads")(
                delayed(self._score_block)(rows, row_mz, row_rt, records, s, e) for s, e in blocks
            )
        else:
            results = [self._score_block(rows, row_mz, row_rt, records, s, e) for s, e in blocks]
        return [cand for block in results for cand in block]

    def merge(self, master: MasterTable, records: Sequence[FeatureRecord], table_index: int = 0) -> PassReport:
        """Merge one table into `master` (one full pass)."""
        start_time = time.time()
        report = PassReport(table_index=int(table_index), n_records=len(records))

        candidates = self.generate_candidates(master, records)
        chosen = assign_greedy(candidates)

        for cand in chosen:
            master.row(cand.row_id).add(records[cand.record_index])
        matched = {cand.record_index for cand in chosen}
        for idx, record in enumerate(records):
            if idx not in matched:
                master.new_row(record)

        report.n_candidates = len(candidates)
        report.n_matched = len(chosen)
        report.n_new_rows = len(records) - len(chosen)
        report.total_score = float(sum(c.score for c in chosen))
        report.execution_time = time.time() - start_time
        return report

    def _order(self, tables: Sequence[Sequence[FeatureRecord]]) -> List[int]:
        order = list(range(len(tables)))
        if self.config.largest_first and tables:
            first = max(order, key=lambda i: (len(tables[i]), -i))
            order = [first] + [i for i in order if i != first]
        return order

    def align(self, tables: Sequence[Sequence[FeatureRecord]]) -> AlignmentResult:
        start_time = time.time()
        tables = [list(t) for t in tables]
        total = len(tables)
        self.progress = 0.0
        result = AlignmentResult(table=MasterTable(name=self.config.name), status=FINISHED)

        if total == 0:
            self._report_progress(0, 0)
            result.execution_time = time.time() - start_time
            return result

        order = self._order(tables)
        self._note_shared_runs(tables, order)
        try:
            self._check_cancelled()
            seed_records = tables[order[0]]
            result.table = self.seed(seed_records)
            self._note_invalid(result, order[0], seed_records)
            logger.info("seeded %r with %d rows from table %d", result.table.name, len(result.table), order[0])
            self._report_progress(1, total)

            for done, k in enumerate(order[1:], start=2):
                self._check_cancelled()
                records = tables[k]
                self._note_invalid(result, k, records)
                report = self.merge(result.table, records, table_index=k)
                result.passes.append(report)
                logger.info(
                    "table %d: %d records, %d candidates, %d matched, %d new rows (%.2fs)",
                    k,
                    report.n_records,
                    report.n_candidates,
                    report.n_matched,
                    report.n_new_rows,
                    report.execution_time,
                )
                self._report_progress(done, total)
        except AlignmentCancelled:
            result.status = CANCELLED
            logger.warning("alignment cancelled after %d of %d tables", len(result.passes) + 1, total)

        result.execution_time = time.time() - start_time
        return result

    @staticmethod
    def _note_shared_runs(tables: Sequence[Sequence[FeatureRecord]], order: Sequence[int]) -> None:
        seen: Set[str] = set()
        for k in order:
            runs = {r.source_id for r in tables[k]}
            shared = runs & seen
            if shared:
                logger.warning(
                    "table %d reuses run ids %s of an earlier table; its features cannot join those rows",
                    k,
                    sorted(shared),
                )
            seen |= runs

    @staticmethod
    def _note_invalid(result: AlignmentResult, table_index: int, records: Sequence[FeatureRecord]) -> None:
        n_bad = _count_invalid(records)
        if n_bad:
            result.n_invalid_records += n_bad
            logger.warning("table %d: %d features with non-finite or out-of-range m/z/RT excluded from matching", table_index, n_bad)


TableLike = Union[pd.DataFrame, Sequence[FeatureRecord]]


def align_tables(
    tables: Sequence[TableLike],
    config: Optional[AlignConfig] = None,
    *,
    names: Optional[Sequence[str]] = None,
    schema: Optional[SchemaConfig] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> AlignmentResult:
    """Convenience wrapper accepting record sequences or pandas DataFrames.

    DataFrames are converted with `records_from_frame`; their run ids come from
    `names` (default `DS1`, `DS2`, ...).
    """
    if names is None:
        names = [f"DS{k+1}" for k in range(len(tables))]
    if len(names) != len(tables):
        raise ValueError("names must have one entry per table")
    counts = Counter(str(n) for n in names)
    dupes = sorted(n for n, c in counts.items() if c > 1)
    if dupes:
        raise ValueError(f"run names must be unique; repeated: {dupes}")
    converted: List[List[FeatureRecord]] = []
    for name, table in zip(names, tables):
        if isinstance(table, pd.DataFrame):
            converted.append(records_from_frame(table, str(name), schema))
        else:
            converted.append(list(table))
    aligner = JoinAligner(config, should_cancel=should_cancel, on_progress=on_progress)
    return aligner.align(converted)


__all__ = [
    "FINISHED",
    "CANCELLED",
    "PassReport",
    "AlignmentResult",
    "JoinAligner",
    "assign_greedy",
    "align_tables",
]
