from __future__ import annotations
import json
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple, TypeVar
import pandas as pd
from .config import GeneratorConfig
from .history import HistoricalSeries
from .models import SleepData, StepsData

SLEEP_COLUMNS = ["user_id", "date", "bed_time", "wake_time", "in_bed_hours",
                 "total_sleep_hours", "n_stages", "awake_fragments"]
STAGE_COLUMNS = ["user_id", "date", "stage", "start_time", "end_time", "duration_s"]
STEPS_COLUMNS = ["user_id", "date", "total_steps", "is_partial"]
HOURLY_COLUMNS = ["user_id", "date", "hour", "steps", "start_time", "end_time"]
INCREMENT_COLUMNS = ["user_id", "date", "timestamp", "steps", "activity_type"]
ISSUE_COLUMNS = ["user_id", "date", "code", "severity", "message"]

FRAME_NAMES = ["sleep", "sleep_stages", "steps_daily", "steps_hourly", "step_increments", "issues"]


def series_frames(series: HistoricalSeries) -> Dict[str, pd.DataFrame]:
    """Flatten one user's series into the tabular outputs."""
    uid = series.user_id
    sleep_rows, stage_rows = [], []
    for s in series.sleep:
        sleep_rows.append([uid, s.date, s.bed_time, s.wake_time, round(s.in_bed_hours, 3),
                           round(s.total_sleep_hours, 3), len(s.stages), s.awake_fragments])
        for st in s.stages:
            stage_rows.append([uid, s.date, st.stage.value, st.start_time, st.end_time, int(st.duration_seconds)])

    steps_rows, hourly_rows = [], []
    for d in series.steps:
        steps_rows.append([uid, d.date, d.total_steps, d.is_partial])
        for h in d.hourly_steps:
            hourly_rows.append([uid, d.date, h.hour, h.steps, h.start_time, h.end_time])

    inc_rows = [[uid, dist.date, i.timestamp, i.steps, i.activity_type.value]
                for dist in series.distributions for i in dist.increments]
    issue_rows = [[uid, i.date, i.code, i.severity.value, i.message] for i in series.issues]

    return {
        "sleep": pd.DataFrame(sleep_rows, columns=SLEEP_COLUMNS),
        "sleep_stages": pd.DataFrame(stage_rows, columns=STAGE_COLUMNS),
        "steps_daily": pd.DataFrame(steps_rows, columns=STEPS_COLUMNS),
        "steps_hourly": pd.DataFrame(hourly_rows, columns=HOURLY_COLUMNS),
        "step_increments": pd.DataFrame(inc_rows, columns=INCREMENT_COLUMNS),
        "issues": pd.DataFrame(issue_rows, columns=ISSUE_COLUMNS),
    }

def concat_frames(parts: Sequence[Dict[str, pd.DataFrame]]) -> Dict[str, pd.DataFrame]:
    out = {}
    for name in FRAME_NAMES:
        frames = [p[name] for p in parts if name in p and len(p[name])]
        if frames:
            out[name] = pd.concat(frames, ignore_index=True)
        else:
            out[name] = parts[0][name].iloc[0:0] if parts else pd.DataFrame()
    return out


def _write_csv(df: pd.DataFrame, path: Path):
    df.to_csv(path, index=False)

def _write_parquet(df: pd.DataFrame, path: Path):
    # Try pyarrow; if missing, raise a clear error
    try:
        df.to_parquet(path, index=False)
    except ImportError as e:
        raise RuntimeError(
            "Parquet write failed. Install pyarrow (pip install synthhealth[parquet]) or use --format csv."
        ) from e

def write_outputs(frames: Dict[str, pd.DataFrame], out_dir: Path, cfg: GeneratorConfig) -> dict:
    written = {}
    fmt = cfg.out_format
    for name, df in frames.items():
        if fmt in ("csv", "both"):
            p = out_dir / f"{name}.csv"
            _write_csv(df, p)
            written[f"{name}_csv"] = str(p)
        if fmt in ("parquet", "both"):
            p = out_dir / f"{name}.parquet"
            _write_parquet(df, p)
            written[f"{name}_parquet"] = str(p)
    return written


T = TypeVar("T")

def create_batches(items: Iterable[T], batch_size: int = 100) -> List[List[T]]:
    """Split items into consecutive batches for a sink that writes in bounded chunks."""
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    items = list(items)
    return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]


# ---- dated snapshots (ISO-8601, sorted keys) ----

def series_snapshot(series: HistoricalSeries) -> dict:
    return {
        "user_id": series.user_id,
        "sleep": [s.to_dict() for s in series.sleep],
        "steps": [d.to_dict() for d in series.steps],
    }

def snapshot_records(payload: dict) -> Tuple[List[SleepData], List[StepsData]]:
    return ([SleepData.from_dict(s) for s in payload.get("sleep", [])],
            [StepsData.from_dict(d) for d in payload.get("steps", [])])

def dumps_snapshot(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, indent=2)

def dump_snapshot(payload: dict, path: Path) -> Path:
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(dumps_snapshot(payload))
    return path

def load_snapshot(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
