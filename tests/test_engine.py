import numpy as np
import pytest

from mass_align import (
    AlignConfig,
    AlignmentCancelled,
    CandidatePair,
    ConfigurationError,
    FeatureRecord,
    JoinAligner,
    MZTolerance,
    RTTolerance,
    align_tables,
    assign_greedy,
)
from mass_align.engine import CANCELLED, FINISHED
from mass_align.evaluation import assignment_gap


def _config(mz_abs: float = 0.005, rt_abs: float = 0.05, **kwargs) -> AlignConfig:
    return AlignConfig(
        mz_tolerance=MZTolerance(absolute=mz_abs),
        rt_tolerance=RTTolerance(absolute=rt_abs),
        mz_weight=kwargs.pop("mz_weight", 1.0),
        rt_weight=kwargs.pop("rt_weight", 1.0),
        **kwargs,
    )


def _random_tables(seed: int, n_tables: int = 4, n: int = 40, charges: bool = False):
    rng = np.random.default_rng(seed)
    base_mz = rng.uniform(100.0, 120.0, size=n)
    base_rt = rng.uniform(1.0, 3.0, size=n)
    tables = []
    for k in range(n_tables):
        keep = rng.random(n) < 0.8
        tables.append(
            [
                FeatureRecord(
                    source_id=f"run{k}",
                    mz=float(base_mz[i] + rng.normal(0, 0.002)),
                    rt=float(base_rt[i] + rng.normal(0, 0.02)),
                    charge=int(rng.integers(0, 4)) if charges else 0,
                    feature_id=f"f{i}",
                )
                for i in np.flatnonzero(keep)
            ]
        )
    return tables


def test_close_features_merge_into_one_row():
    a = [FeatureRecord("A", 100.000, 5.00)]
    b = [FeatureRecord("B", 100.002, 5.01)]
    res = JoinAligner(_config(mz_abs=0.005, rt_abs=0.05)).align([a, b])
    assert res.status == FINISHED
    assert len(res.table) == 1
    row = res.table.rows[0]
    assert set(row.members) == {"A", "B"}
    assert row.avg_mz == pytest.approx(100.001)
    assert row.avg_rt == pytest.approx(5.005)


def test_narrow_mz_window_keeps_features_apart():
    a = [FeatureRecord("A", 100.000, 5.00)]
    b = [FeatureRecord("B", 100.002, 5.01)]
    res = JoinAligner(_config(mz_abs=0.0001, rt_abs=0.05)).align([a, b])
    assert len(res.table) == 2
    assert [list(row.members) for row in res.table] == [["A"], ["B"]]


def test_greedy_tie_goes_to_smaller_differences_then_ids():
    cands = [
        CandidatePair(row_id=0, record_index=1, score=0.9, mz_diff=0.002, rt_diff=0.0),
        CandidatePair(row_id=0, record_index=0, score=0.9, mz_diff=0.001, rt_diff=0.0),
        CandidatePair(row_id=1, record_index=2, score=0.5, mz_diff=0.003, rt_diff=0.0),
    ]
    chosen = assign_greedy(cands)
    assert [(c.row_id, c.record_index) for c in chosen] == [(0, 0), (1, 2)]

    exact_tie = [
        CandidatePair(row_id=0, record_index=1, score=0.9, mz_diff=0.0, rt_diff=0.0),
        CandidatePair(row_id=0, record_index=0, score=0.9, mz_diff=0.0, rt_diff=0.0),
    ]
    assert [(c.row_id, c.record_index) for c in assign_greedy(exact_tie)] == [(0, 0)]


def test_competing_equal_scores_leave_one_record_as_new_row():
    seed = [FeatureRecord("A", 100.0, 5.0), FeatureRecord("A", 200.0, 5.0)]
    # Two records tie exactly for row 0; the third belongs to row 1.
    table = [
        FeatureRecord("B", 100.0, 5.25, feature_id="r0"),
        FeatureRecord("B", 100.0, 4.75, feature_id="r1"),
        FeatureRecord("B", 200.0, 5.4, feature_id="r2"),
    ]
    aligner = JoinAligner(_config(mz_abs=0.01, rt_abs=0.5))
    res = aligner.align([seed, table])

    assert len(res.table) == 3
    row0, row1, new_row = res.table.rows
    assert row0.members["B"].feature_id == "r0"
    assert row1.members["B"].feature_id == "r2"
    assert new_row.row_id == 2
    assert [r.feature_id for r in new_row.members.values()] == ["r1"]
    assert res.passes[0].n_matched == 2
    assert res.passes[0].n_new_rows == 1


def test_single_table_with_zero_width_is_reproduced():
    table = [FeatureRecord("A", 100.0 + i, 1.0 + 0.1 * i, feature_id=str(i)) for i in range(5)]
    res = JoinAligner(_config(mz_abs=0.0, rt_abs=0.0)).align([table])
    assert res.status == FINISHED
    assert res.passes == []
    assert [row.row_id for row in res.table] == list(range(5))
    assert [row.members["A"] for row in res.table] == table


def test_repeated_table_under_one_run_id_stays_unjoined():
    # Two copies carrying the same run id: the run gate blocks every pair.
    table = [FeatureRecord("A", 100.0 + i, 1.0 + 0.1 * i, feature_id=str(i)) for i in range(5)]
    res = JoinAligner(_config(mz_abs=0.0, rt_abs=0.0)).align([table, table])
    assert res.status == FINISHED
    assert len(res.table) == 2 * len(table)
    assert all(len(row) == 1 for row in res.table)
    assert res.passes[0].n_candidates == 0
    assert res.passes[0].n_matched == 0
    assert res.passes[0].n_new_rows == len(table)


def test_empty_input_gives_empty_table():
    aligner = JoinAligner(_config())
    res = aligner.align([])
    assert res.status == FINISHED
    assert len(res.table) == 0
    assert aligner.progress == 1.0


def test_rows_never_hold_two_features_of_one_run():
    tables = _random_tables(seed=1)
    res = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1)).align(tables)
    total = sum(len(t) for t in tables)
    assert sum(len(row) for row in res.table) == total
    for row in res.table:
        sids = [r.source_id for r in row.members.values()]
        assert len(sids) == len(set(sids))
        assert row.avg_mz == pytest.approx(np.mean([r.mz for r in row.members.values()]))
        assert row.avg_rt == pytest.approx(np.mean([r.rt for r in row.members.values()]))


def test_committed_pairs_satisfy_both_windows():
    cfg = _config(mz_abs=0.01, rt_abs=0.1)
    aligner = JoinAligner(cfg)
    tables = _random_tables(seed=2)
    master = aligner.seed(tables[0])
    for records in tables[1:]:
        chosen = assign_greedy(aligner.generate_candidates(master, records))
        for cand in chosen:
            row = master.row(cand.row_id)
            assert cfg.mz_tolerance.accepts(row.avg_mz, records[cand.record_index].mz)
            assert cfg.rt_tolerance.accepts(row.avg_rt, records[cand.record_index].rt)
        aligner.merge(master, records)


def test_alignment_is_deterministic():
    tables = _random_tables(seed=3)
    first = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1)).align(tables)
    second = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1)).align(tables)
    assert first.table.membership() == second.table.membership()
    assert first.table.to_frame().equals(second.table.to_frame())


def test_parallel_candidate_generation_matches_serial():
    tables = _random_tables(seed=4, n=60)
    serial = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1)).align(tables)
    parallel = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1, n_jobs=2, chunk_size=7)).align(tables)
    assert serial.table.membership() == parallel.table.membership()


def test_greedy_pass_is_locally_optimal_and_half_approximate():
    aligner = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1))
    for seed in range(10):
        tables = _random_tables(seed=100 + seed, n_tables=2, n=8)
        master = aligner.seed(tables[0])
        cands = aligner.generate_candidates(master, tables[1])
        chosen = assign_greedy(cands)
        by_row = {c.row_id: c for c in chosen}
        by_rec = {c.record_index: c for c in chosen}
        for cand in cands:
            if cand in chosen:
                continue
            blockers = [b for b in (by_row.get(cand.row_id), by_rec.get(cand.record_index)) if b is not None]
            # Some committed pair on one of its sides was preferred to it.
            assert any(b.sort_key < cand.sort_key for b in blockers)

        gap = assignment_gap(cands)
        assert gap["optimal_total"] >= gap["greedy_total"] - 1e-9
        assert gap["greedy_total"] >= 0.5 * gap["optimal_total"] - 1e-9


def test_same_charge_constraint_holds_for_random_charges():
    cfg = _config(mz_abs=0.01, rt_abs=0.1, require_same_charge=True)
    for seed in range(5):
        res = JoinAligner(cfg).align(_random_tables(seed=200 + seed, charges=True))
        for row in res.table:
            nonzero = {r.charge for r in row.members.values() if r.charge != 0}
            assert len(nonzero) <= 1


def test_invalid_records_become_singletons_and_are_counted():
    a = [FeatureRecord("A", 100.0, 5.0), FeatureRecord("A", float("nan"), 5.0)]
    b = [FeatureRecord("B", 100.0, 5.0), FeatureRecord("B", 100.0, float("inf"))]
    res = JoinAligner(_config()).align([a, b])
    assert res.status == FINISHED
    assert res.n_invalid_records == 2
    assert len(res.table) == 3
    assert set(res.table.rows[0].members) == {"A", "B"}
    assert all(len(row) == 1 for row in res.table.rows[1:])


def test_cancellation_between_passes_keeps_committed_state():
    tables = _random_tables(seed=5, n_tables=3)
    aligner = JoinAligner(_config(mz_abs=0.01, rt_abs=0.1))
    seen = []

    def on_progress(fraction):
        seen.append(fraction)
        aligner.cancel()

    aligner.on_progress = on_progress
    res = aligner.align(tables)
    assert res.status == CANCELLED
    assert res.passes == []
    assert len(res.table) == len(tables[0])
    assert seen == [pytest.approx(1 / 3)]


def test_stop_request_after_last_table_keeps_finished_result():
    tables = _random_tables(seed=7, n_tables=3)

    def on_progress(fraction):
        if fraction >= 1.0:
            raise AlignmentCancelled("late stop")

    res = align_tables(tables, _config(mz_abs=0.01, rt_abs=0.1), on_progress=on_progress)
    assert res.status == FINISHED
    assert len(res.passes) == 2


def test_empty_input_ignores_stop_request_from_progress_hook():
    def on_progress(fraction):
        raise AlignmentCancelled("stop")

    aligner = JoinAligner(_config(), on_progress=on_progress)
    res = aligner.align([])
    assert res.status == FINISHED
    assert aligner.progress == 1.0


def test_should_cancel_hook_and_progress_are_monotonic():
    tables = _random_tables(seed=6, n_tables=4)
    calls = {"n": 0}

    def should_cancel():
        calls["n"] += 1
        return calls["n"] > 2

    seen = []
    res = align_tables(tables, _config(mz_abs=0.01, rt_abs=0.1), should_cancel=should_cancel, on_progress=seen.append)
    assert res.status == CANCELLED
    assert len(res.passes) == 1
    assert seen == sorted(seen)
    assert seen == [pytest.approx(0.25), pytest.approx(0.5)]

    seen = []
    res = align_tables(tables, _config(mz_abs=0.01, rt_abs=0.1), on_progress=seen.append)
    assert res.status == FINISHED
    assert seen[-1] == 1.0
    assert seen == sorted(seen)


def test_largest_first_seeds_from_biggest_table():
    small = [FeatureRecord("S", 100.0, 5.0)]
    big = [FeatureRecord("L", 300.0, 1.0), FeatureRecord("L", 100.0, 5.0)]
    res = JoinAligner(_config(largest_first=True)).align([small, big])
    assert [list(row.members) for row in res.table] == [["L"], ["L", "S"]]


def test_degenerate_weights_are_rejected_before_alignment():
    with pytest.raises(ConfigurationError):
        JoinAligner(_config(mz_weight=0.0, rt_weight=0.0))
