"""Validated settings for the learnpath CLI tools, loaded from TOML and the environment."""

from __future__ import annotations

import math
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import MisconfiguredWeights
from .learner_profile import normalize_profile_id

WEIGHT_TOLERANCE = 1e-6

DEFAULT_CONFIG_PATHS = [
    Path.home() / ".config" / "learnpath" / "learnpath.toml",
    Path("learnpath.toml"),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LEARNPATH_", extra="ignore")

    # Assessment weights; must sum to 1.0.
    knowledge_test_weight: float = Field(0.3, ge=0.0, le=1.0)
    code_quality_weight: float = Field(0.4, ge=0.0, le=1.0)
    practice_weight: float = Field(0.3, ge=0.0, le=1.0)

    stage_pass_score: float = Field(70.0, ge=0.0, le=100.0)
    weekly_target_score: float = Field(75.0, ge=0.0, le=100.0)
    strength_score: float = Field(90.0, ge=0.0, le=100.0)

    min_coverage: float = Field(80.0, ge=0.0, le=100.0)
    min_quality_score: float = Field(80.0, ge=0.0, le=100.0)
    lint_penalty: float = Field(2.0, ge=0.0)
    format_penalty: float = Field(1.0, ge=0.0)

    streak_ladder: List[int] = Field(default_factory=lambda: [7, 14, 30])
    quality_ladder: List[int] = Field(default_factory=lambda: [80, 90, 95])
    hours_ladder: List[int] = Field(default_factory=lambda: [10, 50, 100])
    exercise_ladder: List[int] = Field(default_factory=lambda: [1, 10, 50])

    weekly_exercise_target: int = Field(10, ge=0)
    stage_exercise_target: int = Field(20, ge=0)

    lock_timeout_ms: int = Field(5000, ge=0)
    timezone: str = "UTC"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "share" / "learnpath")
    profile_id: str = "default"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, TomlConfigSettingsSource(settings_cls))

    @field_validator("streak_ladder", "quality_ladder", "hours_ladder", "exercise_ladder")
    @classmethod
    def _sorted_ladder(cls, value: List[int]) -> List[int]:
        if any(threshold <= 0 for threshold in value):
            raise ValueError("achievement thresholds must be positive integers")
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        trimmed = value.strip() or "UTC"
        try:
            return ZoneInfo(trimmed).key
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {trimmed!r}") from exc

    @field_validator("profile_id")
    @classmethod
    def _normalise_profile_id(cls, value: str) -> str:
        return normalize_profile_id(value)

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def weights(self) -> Dict[str, float]:
        return {
            "knowledge_test": self.knowledge_test_weight,
            "code_quality": self.code_quality_weight,
            "practice_completion": self.practice_weight,
        }

    def validate_weights(self) -> None:
        """Raise MisconfiguredWeights unless the three weights sum to 1.0."""
        weights = self.weights()
        total = math.fsum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise MisconfiguredWeights(weights, f"sum is {total:.6f}, expected 1.0")

    def profile_dir(self, profile_id: Optional[str] = None) -> Path:
        resolved = normalize_profile_id(profile_id) if profile_id else self.profile_id
        return Path(self.data_dir).expanduser() / resolved


def find_config() -> Optional[Path]:
    """Find the config file named by LEARNPATH_CONFIG or the first default that exists."""
    explicit = os.getenv("LEARNPATH_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path
    return None


def load_settings(config_path: Optional[Path] = None, **overrides: object) -> Settings:
    """Build settings from TOML, environment, and overrides, failing fast on bad weights."""
    path = Path(config_path).expanduser() if config_path else find_config()
    if path is not None and not path.is_file():
        raise RuntimeError(f"Config file not found: {path}")

    settings_cls: Type[Settings] = Settings
    if path is not None:

        class _FileSettings(Settings):
            model_config = SettingsConfigDict(toml_file=path)

        settings_cls = _FileSettings

    try:
        settings = settings_cls(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid learnpath configuration: {exc}") from exc
    settings.validate_weights()
    return settings


@lru_cache
def get_settings() -> Settings:
    return load_settings()


__all__ = [
    "DEFAULT_CONFIG_PATHS",
    "Settings",
    "WEIGHT_TOLERANCE",
    "find_config",
    "get_settings",
    "load_settings",
]
