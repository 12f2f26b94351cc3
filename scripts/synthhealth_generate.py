#!/usr/bin/env python3
"""CLI: SynthHealth synthetic sleep + steps dataset generator.

Examples:
  python synthhealth_generate.py --out ./out --n-users 50 --n-days 30 --seed 42 --format csv
  python synthhealth_generate.py --out ./out --config ./config.json --end-boundary today
"""
from __future__ import annotations
import argparse
import logging
from synthhealth_gen.config import GeneratorConfig
from synthhealth_gen.pipeline import generate_dataset

def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--out", required=True, help="Output directory")
    p.add_argument("--config", default=None, help="Optional config JSON (overrides defaults)")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--n-users", type=int, default=None)
    p.add_argument("--n-days", type=int, default=None)
    p.add_argument("--end-boundary", type=str, default=None, choices=["yesterday", "today"])
    p.add_argument("--reference-date", type=str, default=None,
                   help="ISO date treated as today (default: the current date)")
    p.add_argument("--mode", type=str, default=None, choices=["simple", "wearable"],
                   help="simple = phone-only sleep stages, wearable = light/deep/REM cycles")
    p.add_argument("--workers", type=int, default=None, help="Worker processes for per-user generation")
    p.add_argument("--format", type=str, default=None, choices=["csv", "parquet", "both"])
    p.add_argument("--no-checks", action="store_true", help="Skip sanity checks")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args()

def main():
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = GeneratorConfig()
    if args.config:
        cfg = GeneratorConfig.from_json(args.config)

    # apply CLI overrides
    for key, val in {
        "seed": args.seed,
        "n_users": args.n_users,
        "n_days": args.n_days,
        "end_boundary": args.end_boundary,
        "reference_date": args.reference_date,
        "mode": args.mode,
        "n_workers": args.workers,
        "out_format": args.format,
    }.items():
        if val is not None:
            setattr(cfg, key, val)

    res = generate_dataset(cfg, out_dir=args.out, run_checks=not args.no_checks)
    print("✅ Done.")
    print(f"metadata.json: {res['metadata_path']}")
    if res["sanity_report_path"]:
        print(f"sanity_report.json: {res['sanity_report_path']}")
    for k, v in res["outputs"].items():
        print(f"{k}: {v}")

if __name__ == "__main__":
    main()
