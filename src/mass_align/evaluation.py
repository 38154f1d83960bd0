"""Alignment diagnostics: master-table summary and greedy-vs-optimal pass gap."""

from __future__ import annotations

from typing import Any, Dict, Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment  # type: ignore

from .engine import AlignmentResult, assign_greedy
from .model import CandidatePair, MasterTable


def summarize_table(table: MasterTable) -> Dict[str, Any]:
    """Row counts, per-run coverage and within-row spread of m/z (ppm) and RT."""
    runs = table.source_ids
    n_rows = len(table)
    if n_rows == 0:
        return {
            "n_rows": 0,
            "n_runs": 0,
            "coverage": {},
            "size_counts": {},
            "mean_ppm_spread": np.nan,
            "mean_rt_spread": np.nan,
        }

    sizes = np.array([len(row) for row in table], dtype=int)
    size_values, size_counts = np.unique(sizes, return_counts=True)
    coverage = {sid: sum(1 for row in table if sid in row.members) / n_rows for sid in runs}

    ppm_spread = []
    rt_spread = []
    for row in table:
        if len(row) < 2 or not row.is_valid:
            continue
        mz = np.array([r.mz for r in row.members.values()], dtype=float)
        rt = np.array([r.rt for r in row.members.values()], dtype=float)
        ppm_spread.append((mz.max() - mz.min()) / row.avg_mz * 1e6)
        rt_spread.append(rt.max() - rt.min())

    return {
        "n_rows": int(n_rows),
        "n_runs": len(runs),
        "coverage": coverage,
        "size_counts": {int(k): int(v) for k, v in zip(size_values, size_counts)},
        "mean_ppm_spread": float(np.mean(ppm_spread)) if ppm_spread else np.nan,
        "mean_rt_spread": float(np.mean(rt_spread)) if rt_spread else np.nan,
    }


def summarize_alignment(result: AlignmentResult) -> Dict[str, Any]:
    summary = summarize_table(result.table)
    summary.update(
        {
            "status": result.status,
            "n_passes": len(result.passes),
            "n_matched": int(sum(p.n_matched for p in result.passes)),
            "n_candidates": int(sum(p.n_candidates for p in result.passes)),
            "n_invalid_records": int(result.n_invalid_records),
            "execution_time": float(result.execution_time),
        }
    )
    return summary


def assignment_gap(candidates: Sequence[CandidatePair]) -> Dict[str, float]:
    """Total score of the greedy selection against the maximum-weight matching.

    The optimum is solved with the Hungarian algorithm over the candidate graph;
    missing edges carry no weight and are never counted.
    """
    greedy = assign_greedy(candidates)
    greedy_total = float(sum(c.score for c in greedy))
    if not candidates:
        return {"greedy_total": 0.0, "optimal_total": 0.0, "gap": 0.0, "n_greedy": 0, "n_optimal": 0}

    row_ids = sorted({c.row_id for c in candidates})
    rec_ids = sorted({c.record_index for c in candidates})
    row_pos = {r: i for i, r in enumerate(row_ids)}
    rec_pos = {r: j for j, r in enumerate(rec_ids)}
    weight = np.zeros((len(row_ids), len(rec_ids)), dtype=float)
    present = np.zeros_like(weight, dtype=bool)
    for c in candidates:
        i, j = row_pos[c.row_id], rec_pos[c.record_index]
        weight[i, j] = max(weight[i, j], float(c.score))
        present[i, j] = True

    row_ind, col_ind = linear_sum_assignment(weight, maximize=True)
    keep = present[row_ind, col_ind]
    optimal_total = float(weight[row_ind, col_ind][keep].sum())
    return {
        "greedy_total": greedy_total,
        "optimal_total": optimal_total,
        "gap": optimal_total - greedy_total,
        "n_greedy": len(greedy),
        "n_optimal": int(keep.sum()),
    }


__all__ = ["summarize_table", "summarize_alignment", "assignment_gap"]
