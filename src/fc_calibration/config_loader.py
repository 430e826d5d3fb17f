"""
Configuration Loader & Validation
"""

import logging
import os
import yaml
from pathlib import Path
from typing import List
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"

# =============================================================================
# Configuration Models
# =============================================================================

class SystemConfig(BaseModel):
    log_level: str = "INFO"
    log_file: str = "calibration.log"

class ValidatorConfig(BaseModel):
    gravity: float = Field(9.81, gt=0.0)
    tolerance: float = Field(0.15, ge=0.0, le=1.0)
    window_size: int = Field(50, ge=1, le=10000)
    min_samples: int = Field(1, ge=1)
    require_axis_sign: bool = False
    max_sample_age_s: float = Field(2.0, gt=0.0)

class EngineConfig(BaseModel):
    notify_firmware_on_cancel: bool = False
    history_size: int = Field(10, ge=1, le=1000)

class PreconditionConfig(BaseModel):
    enabled: bool = False
    heartbeat_timeout_s: float = Field(5.0, gt=0.0)
    heartbeat_stable_s: float = Field(2.0, ge=0.0)
    min_heartbeats: int = Field(1, ge=1)
    require_disarmed: bool = True

class PositionPattern(BaseModel):
    """One ordered rule of the position-request table."""
    position: int = Field(..., ge=1, le=6)
    all_of: List[str]
    none_of: List[str] = []

def _default_position_patterns() -> List[PositionPattern]:
    # Most specific first: "level" appears in many notices so it goes last
    return [
        PositionPattern(position=4, all_of=["nose", "down"]),
        PositionPattern(position=5, all_of=["nose", "up"]),
        PositionPattern(position=2, all_of=["left"], none_of=["right"]),
        PositionPattern(position=3, all_of=["right"], none_of=["left"]),
        PositionPattern(position=6, all_of=["back"]),
        PositionPattern(position=6, all_of=["upside"]),
        PositionPattern(position=1, all_of=["level"]),
    ]

class StatusPhrasesConfig(BaseModel):
    """
    Firmware phrase table. Firmware wording changes between releases, so
    the table is data rather than code.
    """
    success: List[str] = [
        "successful",
        "calibration successful",
        "calibration complete",
        "calibration done",
        "cal complete",
        "accel offsets",
        "trim ok",
    ]
    failure: List[str] = [
        "calibration failed",
        "calibration cancelled",
        "calibration timeout",
        "cal failed",
        "failed",
        "unsuccessful",
        "not successful",
    ]
    # Success phrases inside these do not count as success
    success_negations: List[str] = ["unsuccessful", "not successful"]
    negations: List[str] = ["not failed", "didn't fail"]
    request_keyword: str = "place"
    positions: List[PositionPattern] = Field(default_factory=_default_position_patterns)
    progress_pattern: str = r"(\d{1,3})\s*%"

class LinkConfig(BaseModel):
    connection: str = "udpin:0.0.0.0:14550"
    baud: int = 115200
    source_system: int = Field(255, ge=1, le=255)
    target_system: int = Field(1, ge=0, le=255)
    target_component: int = Field(1, ge=0, le=255)
    link_timeout_s: float = Field(5.0, gt=0.0)

class AppConfig(BaseModel):
    system: SystemConfig = Field(default_factory=SystemConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    preconditions: PreconditionConfig = Field(default_factory=PreconditionConfig)
    status_phrases: StatusPhrasesConfig = Field(default_factory=StatusPhrasesConfig)
    link: LinkConfig = Field(default_factory=LinkConfig)

# =============================================================================
# Loader
# =============================================================================

def _section(config_data: dict, name: str) -> dict:
    """Return the named section, replacing a missing or null section with {}."""
    if not isinstance(config_data.get(name), dict):
        config_data[name] = {}
    return config_data[name]


def load_and_validate_config(config_path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load configuration from YAML, apply env overrides, and validate.
    """
    path = Path(config_path)
    config_data = {}

    # 1. Load YAML
    if path.exists():
        try:
            with open(path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded config from {path}")
        except Exception as e:
            logger.error(f"Failed to load config file: {e}")
            # Continue with defaults
    else:
        logger.warning(f"Config file {path} not found. Using defaults.")

    if not isinstance(config_data, dict):
        logger.error(f"Config file {path} does not contain a mapping. Using defaults.")
        config_data = {}

    # Empty sections in YAML load as None
    config_data = {k: v for k, v in config_data.items() if v is not None}

    # 2. Environment Overrides
    if os.getenv("LOG_LEVEL"):
        _section(config_data, "system")["log_level"] = os.getenv("LOG_LEVEL").upper()

    if os.getenv("MAVLINK_CONNECTION"):
        _section(config_data, "link")["connection"] = os.getenv("MAVLINK_CONNECTION")

    if os.getenv("GRAVITY_TOLERANCE"):
        try:
            _section(config_data, "validator")["tolerance"] = float(os.getenv("GRAVITY_TOLERANCE"))
        except ValueError:
            logger.warning(f"Ignoring invalid GRAVITY_TOLERANCE={os.getenv('GRAVITY_TOLERANCE')!r}")

    # 3. Validation
    try:
        config = AppConfig(**config_data)
        logger.info("Configuration validated successfully.")
        return config
    except (ValidationError, TypeError) as e:
        logger.error(f"Configuration validation failed: {e}")
        logger.warning("Falling back to default configuration due to validation errors.")
        return AppConfig()

# Global Config Instance
# Can be imported as `from fc_calibration.config_loader import config`
# Note: This loads on import. For dynamic reloading, call load_and_validate_config() explicitly.
try:
    config = load_and_validate_config()
except Exception as e:
    logger.critical(f"Fatal error loading config: {e}")
    config = AppConfig()
