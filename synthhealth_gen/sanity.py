from __future__ import annotations
import numpy as np
import pandas as pd
from .config import GeneratorConfig


def run_sanity_checks(users: pd.DataFrame, frames: dict, cfg: GeneratorConfig) -> dict:
    """Lightweight dataset-level checks over the generated tables.

    Returns a JSON-serializable dict with metrics + pass/fail flags.
    """
    sleep = frames["sleep"]
    steps = frames["steps_daily"]
    incs = frames["step_increments"]
    issues = frames.get("issues", pd.DataFrame(columns=["severity"]))

    report = {"summary": {}, "checks": []}
    report["summary"]["users"] = int(users.shape[0])
    report["summary"]["sleep_rows"] = int(sleep.shape[0])
    report["summary"]["steps_rows"] = int(steps.shape[0])
    report["summary"]["increments"] = int(incs.shape[0])
    report["summary"]["issues_by_severity"] = {
        str(k): int(v) for k, v in issues["severity"].value_counts().items()
    } if len(issues) else {}

    def add_check(name, ok, details):
        report["checks"].append({"name": name, "ok": bool(ok), "details": details})

    # ranges
    if len(sleep):
        hrs = sleep["total_sleep_hours"]
        add_check("Sleep hours range", hrs.between(cfg.min_sleep_hours, cfg.max_sleep_hours).all(), {
            "min": float(hrs.min()), "max": float(hrs.max()), "mean": float(hrs.mean()),
        })
        max_stages = cfg.max_sleep_stages_wearable if cfg.mode == "wearable" else cfg.max_sleep_stages
        add_check("Sleep stage count", (sleep["n_stages"] <= max_stages).all(), {
            "max": int(sleep["n_stages"].max()), "limit": int(max_stages),
        })

    complete = steps[~steps["is_partial"].astype(bool)] if len(steps) else steps
    if len(complete):
        tot = complete["total_steps"]
        add_check("Daily steps range", tot.between(cfg.steps_floor, cfg.steps_ceiling).all(), {
            "min": int(tot.min()), "max": int(tot.max()),
            "p50": float(np.percentile(tot, 50)), "mean": float(tot.mean()),
        })

    # continuity: one row per user/date, no gaps
    if len(steps):
        dup = steps.duplicated(["user_id", "date"]).sum()
        add_check("Unique user/date", dup == 0, {"n_duplicates": int(dup)})
        gaps = 0
        for _, g in steps.groupby("user_id"):
            d = pd.to_datetime(g["date"]).sort_values()
            gaps += int((d.diff().dropna() != pd.Timedelta(days=1)).sum())
        add_check("Contiguous dates", gaps == 0, {"n_gaps": gaps})

    # increments agree with daily totals
    if len(incs) and len(steps):
        per_day = incs.groupby(["user_id", "date"])["steps"].sum()
        merged = steps.set_index(["user_id", "date"])["total_steps"]
        diff = (merged - per_day.reindex(merged.index).fillna(0)).abs()
        add_check("Increments sum to totals", (diff == 0).all(), {"max_abs_diff": float(diff.max())})

    # steps inside the night that ended on the same date
    if len(incs) and len(sleep):
        joined = incs.merge(sleep[["user_id", "date", "bed_time", "wake_time"]], on=["user_id", "date"], how="inner")
        in_sleep = joined[(joined["timestamp"] >= joined["bed_time"]) & (joined["timestamp"] <= joined["wake_time"])]
        share = in_sleep.groupby(["user_id", "date"])["steps"].sum()
        # partial days are exempt
        totals = complete.set_index(["user_id", "date"])["total_steps"].reindex(share.index)
        ratio = (share / totals).fillna(0.0)
        add_check("Sleep-period step share", (ratio <= cfg.sleep_share_cap + 1e-9).all(), {
            "max_share": float(ratio.max()) if len(ratio) else 0.0,
            "days_with_nocturnal_steps": int((share > 0).sum()),
        })

    report["summary"]["ok"] = bool(all(c["ok"] for c in report["checks"]))
    return report
