#!/usr/bin/env python3
"""Engine configuration defaults and ATCG_* environment overrides."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional


ENV_PREFIX = "ATCG_"


@dataclass
class EngineConfig:
    horizon_s: float = 300.0
    step_s: float = 15.0
    min_horizontal_sep_nm: float = 5.0
    min_vertical_sep_ft: float = 1000.0
    wake_separation_enabled: bool = False
    severity_critical_nm: float = 1.0
    severity_high_nm: float = 3.0
    severity_medium_nm: float = 5.0
    urgency_immediate_s: float = 30.0
    urgency_urgent_s: float = 90.0
    urgency_high_s: float = 180.0
    sector_margin_nm: float = 10.0
    cycle_period_s: float = 1.0
    cycle_deadline_s: float = 1.0
    altitude_ceiling_ft: float = 60000.0
    speed_step_kts: float = 20.0
    heading_step_deg: float = 5.0
    max_altitude_steps: int = 4
    max_speed_steps: int = 5
    max_heading_steps: int = 12
    conflict_complexity_increment: float = 2.0
    vertical_rate_complexity_per_fpm: float = 0.001
    status_warning_ratio: float = 0.7
    status_critical_ratio: float = 0.9
    in_trail_heading_deg: float = 30.0
    rebalance_threshold: float = 0.2
    track_timeout_s: float = 120.0
    detection_workers: int = 4
    subscriber_queue_size: int = 64
    telemetry_dir: Optional[str] = None

    def validate(self) -> "EngineConfig":
        if self.step_s <= 0:
            raise ValueError("step_s must be > 0")
        if self.horizon_s < self.step_s:
            raise ValueError("horizon_s must be >= step_s")
        if self.min_horizontal_sep_nm <= 0 or self.min_vertical_sep_ft <= 0:
            raise ValueError("separation minima must be > 0")
        if not (0 < self.severity_critical_nm < self.severity_high_nm < self.severity_medium_nm):
            raise ValueError("severity thresholds must satisfy 0 < critical < high < medium")
        if not (0 < self.urgency_immediate_s < self.urgency_urgent_s < self.urgency_high_s):
            raise ValueError("urgency thresholds must satisfy 0 < immediate < urgent < high")
        if self.sector_margin_nm < 0:
            raise ValueError("sector_margin_nm must be >= 0")
        if self.cycle_period_s <= 0 or self.cycle_deadline_s <= 0:
            raise ValueError("cycle_period_s and cycle_deadline_s must be > 0")
        if self.speed_step_kts <= 0 or self.heading_step_deg <= 0:
            raise ValueError("maneuver steps must be > 0")
        if min(self.max_altitude_steps, self.max_speed_steps, self.max_heading_steps) < 1:
            raise ValueError("maneuver step counts must be >= 1")
        if not (0 < self.status_warning_ratio < self.status_critical_ratio):
            raise ValueError("status ratios must satisfy 0 < warning < critical")
        if self.rebalance_threshold < 0:
            raise ValueError("rebalance_threshold must be >= 0")
        if self.detection_workers < 1 or self.subscriber_queue_size < 1:
            raise ValueError("detection_workers and subscriber_queue_size must be >= 1")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "EngineConfig":
        """Build config from ATCG_<FIELD> variables, e.g. ATCG_HORIZON_S=600."""

        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for item in fields(cls):
            raw = env.get(ENV_PREFIX + item.name.upper())
            if raw is None or str(raw).strip() == "":
                continue
            text = str(raw).strip()
            if item.name == "telemetry_dir":
                values[item.name] = text
            elif isinstance(item.default, bool):
                values[item.name] = text.lower() in {"1", "true", "yes", "on"}
            elif isinstance(item.default, int) and not isinstance(item.default, bool):
                values[item.name] = int(text)
            else:
                values[item.name] = float(text)
        values.update(overrides)
        return cls(**values).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
