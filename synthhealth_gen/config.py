from __future__ import annotations

"""Generator configuration for SynthHealth.

One explicit config object is loaded by the caller (defaults, JSON file, CLI
overrides) and threaded into every generator; nothing reads settings ad hoc.
"""

from dataclasses import dataclass, asdict
from typing import Literal, Dict, Any, Optional
import json


OutputFormat = Literal["csv", "parquet", "both"]
EndBoundaryName = Literal["yesterday", "today"]
DataModeName = Literal["simple", "wearable"]


@dataclass
class GeneratorConfig:
    # ---- dataset shape ----
    seed: int = 42
    n_users: int = 20
    n_days: int = 30
    end_boundary: EndBoundaryName = "yesterday"
    # ISO date treated as "today"; None means the wall-clock date at run time
    reference_date: Optional[str] = None
    mode: DataModeName = "simple"
    # share of generated users explicitly assigned the irregular sleep archetype
    irregular_share: float = 0.15

    # ---- sleep bounds ----
    min_sleep_hours: float = 4.0
    max_sleep_hours: float = 12.0
    max_sleep_stages: int = 10
    max_sleep_stages_wearable: int = 40
    min_stage_seconds: int = 60
    max_awake_fragments: int = 3
    awake_fragment_min_seconds: int = 60
    awake_fragment_max_seconds: int = 480
    sleep_retry_budget: int = 5
    max_timing_jitter_hours: float = 3.0
    late_night_scale: float = 0.3       # late-night probability = (1 - consistency) * scale
    sleep_debt_window_days: int = 7
    sleep_debt_limit_hours: float = 5.0

    # ---- steps bounds ----
    steps_floor: int = 800
    steps_ceiling: int = 25000
    quality_factor_min: float = 0.6
    quality_factor_max: float = 1.25
    # diagnostics only; totals below this are flagged even after clamping
    implausible_steps_floor: int = 800
    max_hourly_steps: int = 15000
    max_increment_steps: int = 10000

    # ---- event composition ----
    major_share: float = 0.85
    minor_share: float = 0.12
    micro_share: float = 0.03
    min_minor_events: int = 5
    max_minor_events: int = 15
    collision_buffer_seconds: int = 300
    placement_attempts: int = 10
    nocturnal_event_prob: float = 0.25
    sleep_share_cap: float = 0.02

    # ---- orchestration / output ----
    history_batch_size: int = 30
    write_batch_size: int = 100
    n_workers: int = 1
    out_format: OutputFormat = "csv"

    def validate(self) -> "GeneratorConfig":
        if self.n_users < 1 or self.n_days < 1:
            raise ValueError("n_users and n_days must be positive")
        if self.end_boundary not in ("yesterday", "today"):
            raise ValueError(f"unknown end_boundary: {self.end_boundary!r}")
        if self.mode not in ("simple", "wearable"):
            raise ValueError(f"unknown mode: {self.mode!r}")
        if not 0 < self.min_sleep_hours < self.max_sleep_hours:
            raise ValueError("sleep hour bounds must satisfy 0 < min < max")
        if not 0 < self.steps_floor < self.steps_ceiling:
            raise ValueError("step bounds must satisfy 0 < floor < ceiling")
        if not 0 < self.quality_factor_min <= self.quality_factor_max:
            raise ValueError("quality factor bounds must satisfy 0 < min <= max")
        shares = self.major_share + self.minor_share + self.micro_share
        if abs(shares - 1.0) > 1e-6:
            raise ValueError(f"event shares must sum to 1.0 (got {shares:.4f})")
        if self.awake_fragment_min_seconds < self.min_stage_seconds:
            raise ValueError("awake fragments cannot be shorter than the minimum stage")
        if self.min_minor_events > self.max_minor_events:
            raise ValueError("min_minor_events must not exceed max_minor_events")
        if self.out_format not in ("csv", "parquet", "both"):
            raise ValueError(f"unknown out_format: {self.out_format!r}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @staticmethod
    def from_json(path: str) -> "GeneratorConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return GeneratorConfig(**data)
