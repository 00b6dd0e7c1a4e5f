"""
Runtime settings.

Defaults live on the dataclass; ``~/.negotiator/config.toml`` may override any
of them. Durations are in seconds.

Example config.toml:

    log_level = "DEBUG"
    sweep_interval = 30

    [voting]
    expires_in = 1800
    early_majority_turnout = 0.66
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from negotiator.errors import ValidationError

DEFAULT_DATA_DIR = Path.home() / ".negotiator"

# Top-level tables in config.toml that map onto prefixed setting names
_SECTIONS = {
    "advertisement": "advertisement_",
    "inquiry": "inquiry_",
    "voting": "voting_",
    "breakdown": "breakdown_",
    "recruitment": "recruitment_",
}


@dataclass
class Settings:
    """All tunables for one negotiator runtime."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    log_level: str = "INFO"
    sweep_interval: float = 60.0

    advertisement_validity: float = 3600.0
    inquiry_response_deadline: float = 30.0

    voting_expires_in: float = 3600.0
    voting_early_majority_turnout: float = 0.66
    voting_consensus_threshold: float = 0.7

    breakdown_voting_expires_in: float = 600.0

    recruitment_expires_in: float = 86400.0
    recruitment_proposal_expires_in: float = 7200.0
    recruitment_compromise_threshold: float = 0.6

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        for name in (
            "sweep_interval",
            "advertisement_validity",
            "inquiry_response_deadline",
            "voting_expires_in",
            "breakdown_voting_expires_in",
            "recruitment_expires_in",
            "recruitment_proposal_expires_in",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValidationError(f"{name} must be > 0, got {value}")
        for name in (
            "voting_early_majority_turnout",
            "voting_consensus_threshold",
            "recruitment_compromise_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"{name} must be in [0.0, 1.0], got {value}")

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "data" / "negotiator.db"

    @property
    def performance_db_path(self) -> Path:
        return self.data_dir / "data" / "performance.db"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "logs" / "negotiator.log"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        """Build settings from a parsed config mapping, flattening sections."""
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in raw.items():
            if key in _SECTIONS and isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    name = _SECTIONS[key] + sub_key
                    if name not in known:
                        raise ValidationError(f"Unknown setting [{key}] {sub_key}")
                    values[name] = sub_value
            elif key in known:
                values[key] = value
            else:
                raise ValidationError(f"Unknown setting {key}")
        return cls(**values)

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Load settings from config.toml, falling back to defaults when absent."""
        config_path = path or DEFAULT_DATA_DIR / "config.toml"
        if not config_path.exists():
            return cls()
        try:
            with config_path.open("rb") as fh:
                raw = tomllib.load(fh)
        except tomllib.TOMLDecodeError as e:
            raise ValidationError(f"Invalid config file {config_path}: {e}") from e
        return cls.from_dict(raw)
