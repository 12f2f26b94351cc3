from __future__ import annotations
import json, hashlib, platform, datetime, sys, logging
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional
import numpy as np
import pandas as pd

from .archetypes import ProfileCache
from .config import GeneratorConfig
from .history import EndBoundary, HistoricalOrchestrator
from .io import concat_frames, series_frames, write_outputs
from .models import DataMode, PersonalizedProfile, VirtualUser
from .sanity import run_sanity_checks
from .users import generate_users, users_frame
from .utils import parse_date

logger = logging.getLogger(__name__)


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024*1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _user_frames(job: tuple) -> Dict[str, pd.DataFrame]:
    """Generate one user's series; takes plain dicts so it can run in a worker process."""
    cfg_dict, user_dict, profile_dict, today_iso, now_iso = job
    cfg = GeneratorConfig(**cfg_dict)
    user = VirtualUser.from_dict(user_dict)
    profiles = ProfileCache()
    profiles.assign(user.id, PersonalizedProfile.from_dict(profile_dict))
    orchestrator = HistoricalOrchestrator(cfg, DataMode(cfg.mode), profiles)
    series = orchestrator.generate_range(
        user, cfg.n_days, EndBoundary(cfg.end_boundary),
        today=datetime.date.fromisoformat(today_iso),
        now=datetime.datetime.fromisoformat(now_iso),
    )
    return series_frames(series)


def _resolve_clock(cfg: GeneratorConfig):
    if cfg.reference_date:
        today = parse_date(cfg.reference_date)
        now = datetime.datetime.combine(today, datetime.time(12, 0))
    else:
        now = datetime.datetime.now().replace(microsecond=0)
        today = now.date()
    return today, now


def generate_dataset(cfg: GeneratorConfig, out_dir: str, run_checks: bool = True) -> dict:
    cfg.validate()
    out_path = Path(out_dir)
    out_path.mkdir(parents=True, exist_ok=True)

    rng = np.random.default_rng(cfg.seed)
    today, now = _resolve_clock(cfg)

    # 1) users (+ explicit archetype assignments)
    profiles = ProfileCache()
    created_at = datetime.datetime.combine(today - datetime.timedelta(days=cfg.n_days), datetime.time(9, 0))
    users: List[VirtualUser] = generate_users(cfg, rng, profiles, created_at=created_at)
    users_df = users_frame(users, profiles)

    # 2) per-user history
    jobs = [(cfg.to_dict(), u.to_dict(), profiles.get(u).to_dict(), today.isoformat(), now.isoformat())
            for u in users]
    if cfg.n_workers > 1 and len(jobs) > 1:
        with ProcessPoolExecutor(max_workers=cfg.n_workers) as pool:
            parts = list(pool.map(_user_frames, jobs))
    else:
        parts = [_user_frames(j) for j in jobs]
    frames = concat_frames(parts)
    logger.info(f"Generated {len(users)} users x {cfg.n_days} days "
                f"({len(frames['step_increments'])} step increments)")

    # 3) write outputs + metadata
    written = write_outputs({"users": users_df, **frames}, out_path, cfg)

    steps = frames["steps_daily"]
    issues = frames["issues"]
    meta = {
        "generated_at_utc": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds"),
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "config": cfg.to_dict(),
        "reference": {"today": today.isoformat(), "now": now.isoformat()},
        "counts": {
            "n_users": int(users_df.shape[0]),
            "n_sleep_rows": int(frames["sleep"].shape[0]),
            "n_steps_rows": int(steps.shape[0]),
            "n_increments": int(frames["step_increments"].shape[0]),
            "n_issues": int(issues.shape[0]),
        },
        "archetypes": {
            "sleep_type": {str(k): int(v) for k, v in users_df["sleep_type"].value_counts().items()},
            "activity_level": {str(k): int(v) for k, v in users_df["activity_level"].value_counts().items()},
        },
        "steps": {
            "mean_daily": float(steps["total_steps"].mean()) if len(steps) else None,
        },
        "files": {},
    }

    for name, path in written.items():
        meta["files"][name] = {
            "path": str(path),
            "sha256": _sha256_file(Path(path)),
        }

    meta_path = out_path / "metadata.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(meta, f, indent=2)

    report_path: Optional[Path] = None
    if run_checks:
        report = run_sanity_checks(users_df, frames, cfg)
        report_path = out_path / "sanity_report.json"
        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
        if not report["summary"]["ok"]:
            failed = [c["name"] for c in report["checks"] if not c["ok"]]
            logger.warning(f"Sanity checks failed: {', '.join(failed)}")

    return {
        "metadata_path": str(meta_path),
        "sanity_report_path": str(report_path) if report_path else None,
        "outputs": written,
    }
