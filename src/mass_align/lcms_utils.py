from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from .model import FeatureRecord, IsotopePattern


@dataclass(frozen=True)
class SchemaConfig:
    mz_col: str = "MZ"
    rt_col: str = "RT"
    charge_col: Optional[str] = "Charge"
    annotation_col: Optional[str] = "Annotation_ID"
    feature_id_col: Optional[str] = "feature_id"
    intensity_col: Optional[str] = "Intensity"
    isotope_col: Optional[str] = "Isotope_Pattern"
    # Separator of multiple identity labels in `annotation_col`.
    annotation_sep: str = ";"


_CANONICAL = {
    "mz_col": "MZ",
    "rt_col": "RT",
    "charge_col": "Charge",
    "annotation_col": "Annotation_ID",
    "feature_id_col": "feature_id",
    "intensity_col": "Intensity",
    "isotope_col": "Isotope_Pattern",
}


def normalize_schema(ds: pd.DataFrame, cfg: SchemaConfig) -> pd.DataFrame:
    """Return a copy with canonical column names.

    Standardizes to:
      - `MZ`, `RT` (required, coerced to float)
      - `Charge`, `Annotation_ID`, `feature_id`, `Intensity`, `Isotope_Pattern` (optional)
    """
    df = ds.copy()
    renames = {}
    for attr, canonical in _CANONICAL.items():
        src = getattr(cfg, attr)
        if src and src != canonical and src in df.columns:
            renames[src] = canonical
    if renames:
        df.rename(columns=renames, inplace=True)

    if "MZ" not in df.columns or "RT" not in df.columns:
        raise ValueError("Input dataset must contain m/z and RT columns (after overrides).")

    df["MZ"] = pd.to_numeric(df["MZ"], errors="coerce").astype(float)
    df["RT"] = pd.to_numeric(df["RT"], errors="coerce").astype(float)
    return df


def parse_isotope_pattern(text: object) -> Optional[IsotopePattern]:
    """Parse `"mz:intensity;mz:intensity"`; empty or missing values give None."""
    if text is None or (isinstance(text, float) and not np.isfinite(text)):
        return None
    body = str(text).strip()
    if not body:
        return None
    mz: List[float] = []
    inten: List[float] = []
    for token in body.split(";"):
        token = token.strip()
        if not token:
            continue
        left, sep, right = token.partition(":")
        if not sep:
            raise ValueError(f"Isotope peak must be 'mz:intensity', got {token!r}")
        mz.append(float(left))
        inten.append(float(right))
    return IsotopePattern(mz=tuple(mz), intensity=tuple(inten)) if mz else None


def _split_labels(value: object, sep: str) -> tuple:
    if value is None or (isinstance(value, float) and not np.isfinite(value)):
        return ()
    return tuple(s.strip() for s in str(value).split(sep) if s.strip())


def _feature_id(value: object) -> Optional[str]:
    if value is None or (isinstance(value, float) and not np.isfinite(value)):
        return None
    return str(value)


def records_from_frame(
    ds: pd.DataFrame,
    source_id: str,
    cfg: Optional[SchemaConfig] = None,
) -> List[FeatureRecord]:
    """Feature records of one run, in table order."""
    cfg = cfg or SchemaConfig()
    df = normalize_schema(ds, cfg)
    n = len(df)

    def _column(name: str) -> Optional[pd.Series]:
        return df[name] if name in df.columns else None

    charge = _column("Charge")
    if charge is not None:
        charge = pd.to_numeric(charge, errors="coerce").replace([np.inf, -np.inf], np.nan).fillna(0).astype(int)
    height = _column("Intensity")
    if height is not None:
        height = pd.to_numeric(height, errors="coerce").replace([np.inf, -np.inf], np.nan).fillna(0.0).astype(float)
    annotations = _column("Annotation_ID")
    feature_ids = _column("feature_id")
    patterns = _column("Isotope_Pattern")

    mz = df["MZ"].to_numpy(dtype=float)
    rt = df["RT"].to_numpy(dtype=float)
    index = [str(x) for x in df.index]

    records: List[FeatureRecord] = []
    for i in range(n):
        records.append(
            FeatureRecord(
                source_id=str(source_id),
                mz=float(mz[i]),
                rt=float(rt[i]),
                charge=0 if charge is None else int(charge.iloc[i]),
                isotope_pattern=None if patterns is None else parse_isotope_pattern(patterns.iloc[i]),
                identities=() if annotations is None else _split_labels(annotations.iloc[i], cfg.annotation_sep),
                feature_id=index[i] if feature_ids is None else _feature_id(feature_ids.iloc[i]),
                height=0.0 if height is None else float(height.iloc[i]),
            )
        )
    return records


__all__ = ["SchemaConfig", "normalize_schema", "parse_isotope_pattern", "records_from_frame"]
