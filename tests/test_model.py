import pandas as pd
import pytest

from mass_align import FeatureRecord, MasterTable, RecordError


def test_row_rejects_second_feature_from_same_run():
    table = MasterTable()
    row = table.new_row(FeatureRecord("A", 100.0, 1.0))
    with pytest.raises(ValueError):
        row.add(FeatureRecord("A", 100.0, 1.0))
    assert len(row) == 1


def test_row_averages_follow_membership():
    table = MasterTable()
    row = table.new_row(FeatureRecord("A", 100.0, 1.0, charge=0, identities=("x",)))
    row.add(FeatureRecord("B", 100.002, 1.2, charge=2, identities=("y", "x")))
    row.add(FeatureRecord("C", 100.004, 1.4, charge=3))
    assert row.avg_mz == pytest.approx(100.002)
    assert row.avg_rt == pytest.approx(1.2)
    assert row.charge == 2
    assert row.identities == ("x", "y")


def test_row_ids_are_monotonic_and_lookup_works():
    table = MasterTable(name="pooled")
    rows = [table.new_row(FeatureRecord("A", 100.0 + i, 1.0)) for i in range(3)]
    assert [r.row_id for r in rows] == [0, 1, 2]
    assert table.row(1) is rows[1]
    assert table.name == "pooled"
    assert table.source_ids == ["A"]


def test_record_identities_are_an_ordered_set():
    record = FeatureRecord("A", 100.0, 1.0, identities=("b", "a", "b"))
    assert record.identities == ("b", "a")


def test_record_check_raises_for_invalid_values():
    assert FeatureRecord("A", 100.0, 0.0).check().is_valid
    with pytest.raises(RecordError):
        FeatureRecord("A", float("nan"), 1.0).check()
    with pytest.raises(RecordError):
        FeatureRecord("A", 0.0, 1.0).check()


def test_to_frame_has_per_run_columns():
    table = MasterTable()
    row = table.new_row(FeatureRecord("A", 100.0, 1.0, feature_id="a1"))
    row.add(FeatureRecord("B", 100.002, 1.1, feature_id="b1"))
    table.new_row(FeatureRecord("B", 200.0, 2.0, feature_id="b2"))
    frame = table.to_frame()
    assert list(frame.columns[:6]) == ["row_id", "avg_mz", "avg_rt", "charge", "identities", "n_members"]
    assert list(frame["B:feature_id"]) == ["b1", "b2"]
    assert pd.isna(frame.loc[1, "A:feature_id"])
