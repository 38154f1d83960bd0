import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

import pandas as pd

from . import __version__
from .config import AlignConfig, load_config
from .errors import ConfigurationError
from .engine import align_tables
from .evaluation import summarize_alignment
from .isotopes import IsotopeComparison
from .lcms_utils import SchemaConfig
from .tolerance import MZTolerance, RTTolerance


def _add_align_parser(sub):
    p = sub.add_parser("align", help="Join-align feature tables of several runs into one table")
    p.add_argument("datasets", nargs="+", help="CSV paths, one feature table per run; first table seeds the alignment")
    p.add_argument("--out", type=str, required=True, help="Output CSV for the aligned feature list")
    p.add_argument("--config", type=str, default=None, help="JSON/YAML alignment config; command line values override it")
    p.add_argument("--names", dest="names", action="append", default=None, help="Run id per dataset (repeat); default: file stem")
    # tolerances and weights
    p.add_argument("--mz-abs", dest="mz_abs", type=float, default=None, help="Absolute m/z tolerance")
    p.add_argument("--ppm", type=float, default=None, help="Relative m/z tolerance (ppm)")
    p.add_argument("--rt-abs", dest="rt_abs", type=float, default=None, help="Absolute RT tolerance")
    p.add_argument("--rt-rel", dest="rt_rel", type=float, default=None, help="Relative RT tolerance (fraction)")
    p.add_argument("--mz-weight", dest="mz_weight", type=float, default=None)
    p.add_argument("--rt-weight", dest="rt_weight", type=float, default=None)
    p.add_argument("--same-charge", dest="same_charge", action="store_true", help="Only align features of equal charge")
    p.add_argument("--same-id", dest="same_id", action="store_true", help="Only align features with overlapping identities")
    p.add_argument("--isotope-weight", dest="isotope_weight", type=float, default=None, help="Enable isotope pattern comparison with this weight")
    p.add_argument("--isotope-min-score", dest="isotope_min_score", type=float, default=None, help="Minimum isotope similarity; needs --isotope-weight or an isotope_comparison in --config")
    p.add_argument("--largest-first", dest="largest_first", action="store_true")
    p.add_argument("--n-jobs", dest="n_jobs", type=int, default=None)
    p.add_argument("--name", type=str, default=None, help="Aligned feature list name")
    # schema
    p.add_argument("--mz-col", type=str, default="MZ")
    p.add_argument("--rt-col", type=str, default="RT")
    p.add_argument("--charge-col", type=str, default="Charge")
    p.add_argument("--annotation-col", type=str, default="Annotation_ID")
    p.add_argument("--feature-id-col", type=str, default="feature_id")
    p.add_argument("--int-col", type=str, default="Intensity")
    p.add_argument("--isotope-col", type=str, default="Isotope_Pattern")
    p.add_argument("--no-manifest", dest="no_manifest", action="store_true", help="Do not write <out>.run_manifest.json")
    return p


def _build_config(args) -> AlignConfig:
    cfg = load_config(Path(args.config)) if args.config else AlignConfig()
    if args.mz_abs is not None or args.ppm is not None:
        cfg.mz_tolerance = MZTolerance(
            absolute=cfg.mz_tolerance.absolute if args.mz_abs is None else args.mz_abs,
            relative=cfg.mz_tolerance.relative if args.ppm is None else args.ppm,
        )
    if args.rt_abs is not None or args.rt_rel is not None:
        cfg.rt_tolerance = RTTolerance(
            absolute=cfg.rt_tolerance.absolute if args.rt_abs is None else args.rt_abs,
            relative=cfg.rt_tolerance.relative if args.rt_rel is None else args.rt_rel,
        )
    if args.mz_weight is not None:
        cfg.mz_weight = args.mz_weight
    if args.rt_weight is not None:
        cfg.rt_weight = args.rt_weight
    if args.same_charge:
        cfg.require_same_charge = True
    if args.same_id:
        cfg.require_same_identity = True
    if args.isotope_weight is not None:
        base = cfg.isotope_comparison or IsotopeComparison()
        cfg.isotope_comparison = replace(base, weight=args.isotope_weight)
    if args.isotope_min_score is not None:
        if cfg.isotope_comparison is None:
            raise ConfigurationError("--isotope-min-score needs --isotope-weight or an isotope_comparison in --config")
        cfg.isotope_comparison = replace(cfg.isotope_comparison, min_score=args.isotope_min_score)
    if args.largest_first:
        cfg.largest_first = True
    if args.n_jobs is not None:
        cfg.n_jobs = args.n_jobs
    if args.name is not None:
        cfg.name = args.name
    return cfg.validate()


def _default_names(paths) -> list:
    """File stems; repeated stems get `_2`, `_3`, ... in input order."""
    names = []
    seen = {}
    for p in paths:
        stem = Path(p).stem
        seen[stem] = seen.get(stem, 0) + 1
        name = stem if seen[stem] == 1 else f"{stem}_{seen[stem]}"
        while name in names:
            seen[stem] += 1
            name = f"{stem}_{seen[stem]}"
        names.append(name)
    return names


def _write_run_manifest(path: Path, payload: dict) -> None:
    path.write_text(json.dumps(payload, indent=2, default=str) + "\n", encoding="utf-8")


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    ap = argparse.ArgumentParser(prog="mass-align", description="Join alignment of LC-MS feature tables")
    ap.add_argument("-v", "--verbose", action="count", default=0)
    sub = ap.add_subparsers(dest="cmd", required=True)
    _add_align_parser(sub)
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "align":
        if args.names and len(args.names) != len(args.datasets):
            print("Need one --names entry per dataset", file=sys.stderr)
            return 2
        if args.names and len(set(args.names)) != len(args.names):
            print("--names entries must be unique", file=sys.stderr)
            return 2
        try:
            cfg = _build_config(args)
        except ConfigurationError as exc:
            print(f"Invalid alignment options: {exc}", file=sys.stderr)
            return 2
        schema = SchemaConfig(
            mz_col=args.mz_col,
            rt_col=args.rt_col,
            charge_col=args.charge_col,
            annotation_col=args.annotation_col,
            feature_id_col=args.feature_id_col,
            intensity_col=args.int_col,
            isotope_col=args.isotope_col,
        )
        dfs = [pd.read_csv(p) for p in args.datasets]
        names = args.names or _default_names(args.datasets)
        res = align_tables(dfs, cfg, names=names, schema=schema)
        out = res.table.to_frame()
        out.to_csv(args.out, index=False)
        print(f"wrote {args.out} with {len(out)} rows from {len(dfs)} tables")

        if not args.no_manifest:
            manifest_path = Path(args.out).with_suffix(".run_manifest.json")
            summary = summarize_alignment(res)
            _write_run_manifest(
                manifest_path,
                {
                    "command": "align",
                    "mass_align_version": __version__,
                    "inputs": dict(zip(names, [str(p) for p in args.datasets])),
                    "n_features": {n: int(len(df)) for n, df in zip(names, dfs)},
                    "config": cfg.to_dict(),
                    "status": res.status,
                    "n_rows": summary["n_rows"],
                    "n_matched": summary["n_matched"],
                    "n_invalid_records": summary["n_invalid_records"],
                    "passes": [vars(p) for p in res.passes],
                },
            )
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
