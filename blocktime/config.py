"""
Engine configuration.

Every tunable of the allocation engine lives in ``EngineConfig``; nothing is
hard-coded at a call site. Values can be loaded from a YAML file so a run is
reproducible:

    admin_undo_window_seconds: 10
    instructor_undo_window_seconds: 600
    match_fallback: fail
    timings:
      - shift: morning
        opening: "08:00"
        closing: "13:00"
        distribution: [[90, 2], [60, 1]]
        working_days: [monday, tuesday, wednesday, thursday, friday]
"""
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import ValidationError
from .models import ORIGIN_INSTRUCTOR, TimingConfig

DEFAULT_WORKING_DAYS: List[str] = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday']

MATCH_FALLBACK_FAIL = 'fail'
MATCH_FALLBACK_LEAST_LOADED = 'least_loaded'


@dataclass
class EngineConfig:
    # Undo windows per request workflow
    admin_undo_window_seconds: int = 10
    instructor_undo_window_seconds: int = 600

    # Slot generation
    distribution_gap_minutes: int = 15
    working_days: List[str] = field(default_factory=lambda: list(DEFAULT_WORKING_DAYS))

    # Exams
    exam_buffer_minutes: int = 30
    match_fallback: str = MATCH_FALLBACK_FAIL

    # Shift timings applied by the command line front end
    timings: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        merged = asdict(cls())
        for k, v in data.items():
            if k in merged:
                merged[k] = v
        return cls(**merged)

    def __post_init__(self):
        if self.match_fallback not in (MATCH_FALLBACK_FAIL, MATCH_FALLBACK_LEAST_LOADED):
            raise ValidationError(f"match_fallback must be 'fail' or 'least_loaded', got {self.match_fallback!r}")
        if self.admin_undo_window_seconds < 0 or self.instructor_undo_window_seconds < 0:
            raise ValidationError("undo windows must not be negative")

    def undo_window(self, origin: str) -> timedelta:
        if origin == ORIGIN_INSTRUCTOR:
            return timedelta(seconds=self.instructor_undo_window_seconds)
        return timedelta(seconds=self.admin_undo_window_seconds)

    def timing_configs(self) -> List[TimingConfig]:
        out = []
        for raw in self.timings:
            raw = dict(raw)
            raw.setdefault('working_days', list(self.working_days))
            try:
                out.append(TimingConfig(**raw))
            except TypeError as exc:
                raise ValidationError(f"Invalid timing entry {raw!r}: {exc}") from exc
        return out


def load_config(path: str = "config.yaml") -> EngineConfig:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return EngineConfig()
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must contain a mapping")
    return EngineConfig.from_dict(data)
