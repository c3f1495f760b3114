"""Configurable scoring weights, assignment thresholds and runtime settings."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, List, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".prospect-engine"


@dataclass
class EngineConfig:
    """Scoring weights, assignment thresholds and override rules."""

    # Lead score: company size points (0-25)
    size_points: Dict[str, int] = field(default_factory=lambda: {
        "enterprise": 25,
        "large": 20,
        "medium": 15,
        "small": 10,
        "unknown": 5,
    })
    opportunity_weight: float = 0.35
    opportunity_cap: int = 35
    # Distinct completed analysis types -> points, highest key that fits wins
    analysis_points: Dict[int, int] = field(default_factory=lambda: {3: 25, 2: 20, 1: 15})
    service_fit_per_tier: int = 5
    service_fit_cap: int = 15

    # Engagement score
    open_rate_weight: float = 0.6
    open_rate_cap: int = 15
    click_rate_weight: float = 6.67
    click_rate_cap: int = 20
    reply_points: int = 25
    reply_cap: int = 25
    bounce_penalty: int = 5
    # (max days since last activity, points), checked in order
    recency_bands: List[List[float]] = field(default_factory=lambda: [
        [1, 20], [7, 15], [30, 10], [90, 5],
    ])
    activity_window_days: int = 30
    points_per_active_day: int = 2
    activity_cap: int = 20

    # Assignment thresholds
    enterprise_score: int = 80
    enterprise_roi: float = 50000
    professional_score: int = 60
    professional_roi: float = 25000
    professional_min_opportunities: int = 2
    warm_score: int = 40
    warm_min_opportunities: int = 1
    campaign_prefix: str = "entelech"
    regulated_industries: List[str] = field(default_factory=lambda: [
        "legal", "healthcare", "financial",
    ])
    compliance_suffix: str = "_compliance"
    compliance_min_delay_hours: float = 2
    large_company_sizes: List[str] = field(default_factory=lambda: ["enterprise", "large"])
    large_company_min_delay_hours: float = 4

    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: Dict) -> "EngineConfig":
        """Build a config from stored JSON, ignoring unknown keys."""
        known = {f for f in cls.__dataclass_fields__ if f != "updated_at"}
        values = {k: v for k, v in data.items() if k in known}
        if "analysis_points" in values:
            values["analysis_points"] = {int(k): int(v) for k, v in values["analysis_points"].items()}
        config = cls(**values)
        if data.get("updated_at"):
            config.updated_at = datetime.fromisoformat(data["updated_at"])
        return config

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["updated_at"] = self.updated_at.isoformat()
        return data


class EngineConfigManager:
    """Manage and persist engine configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager."""
        self.config_path = config_path or settings.config_path
        self.config = self._load_config()

    def _load_config(self) -> EngineConfig:
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    return EngineConfig.from_dict(json.load(f))
            except (OSError, ValueError, TypeError) as e:
                logger.error(f"Error loading engine config from {self.config_path}: {e}")

        return EngineConfig()

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.config.to_dict(), f, indent=2)

    def update_assignment_thresholds(self, enterprise: int, professional: int, warm: int):
        """Update lead score thresholds for the campaign tiers."""
        if not enterprise >= professional >= warm:
            raise ValueError("Thresholds must be ordered enterprise >= professional >= warm")
        self.config.enterprise_score = enterprise
        self.config.professional_score = professional
        self.config.warm_score = warm
        self.config.updated_at = datetime.now()
        self.save_config()

    def set_size_points(self, size: str, points: int):
        """Set lead score points for a company size category."""
        if not 0 <= points <= 25:
            raise ValueError("Company size points must be between 0 and 25")
        self.config.size_points[size] = points
        self.config.updated_at = datetime.now()
        self.save_config()

    def add_regulated_industry(self, pattern: str):
        """Add an industry pattern that gets the compliance sequence."""
        pattern = pattern.strip().lower()
        if pattern and pattern not in self.config.regulated_industries:
            self.config.regulated_industries.append(pattern)
            self.config.updated_at = datetime.now()
            self.save_config()


class Settings:
    """Runtime paths and log level loaded from environment variables."""

    def __init__(self):
        home = Path(os.getenv("PE_HOME", str(DEFAULT_HOME)))
        self.db_path = Path(os.getenv("PE_DATABASE_PATH", str(home / "prospects.db")))
        self.config_path = Path(os.getenv("PE_CONFIG_PATH", str(home / "engine_config.json")))
        self.webhooks_path = Path(os.getenv("PE_WEBHOOKS_PATH", str(home / "webhooks.json")))
        self.log_level = os.getenv("PE_LOG_LEVEL", "WARNING").upper()
        self.default_tenant = os.getenv("PE_TENANT", "default")


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read the environment, used after env changes."""
    global _settings
    _settings = Settings()
    return _settings


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
