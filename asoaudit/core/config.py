"""
Configuration management for asoaudit
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_RULESETS_DIR = PACKAGE_DIR / "rulesets"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineSettings:
    """Immutable knobs handed to the orchestrator at construction time.

    The engine never reads the environment itself; callers build one of these
    (usually through Config.engine_settings()) and inject it.
    """
    drift_threshold: float = 0.40
    min_combo_length: int = 2
    max_combo_length: int = 4
    max_recommendations: int = 0  # 0 = unlimited
    auto_detect_layers: bool = True
    precision: int = 4


class Config:
    """Application configuration"""

    # Rule library
    RULESETS_DIR: str = os.getenv('ASOAUDIT_RULESETS_DIR', str(DEFAULT_RULESETS_DIR))

    # Leak detection
    DRIFT_THRESHOLD: float = float(os.getenv('ASOAUDIT_DRIFT_THRESHOLD', '0.40'))

    # Combo extraction
    MIN_COMBO_LENGTH: int = int(os.getenv('ASOAUDIT_MIN_COMBO_LENGTH', '2'))
    MAX_COMBO_LENGTH: int = int(os.getenv('ASOAUDIT_MAX_COMBO_LENGTH', '4'))

    # Output
    MAX_RECOMMENDATIONS: int = int(os.getenv('ASOAUDIT_MAX_RECOMMENDATIONS', '0'))
    AUTO_DETECT_LAYERS: bool = _env_flag('ASOAUDIT_AUTO_DETECT_LAYERS', 'true')

    # Logging
    LOG_LEVEL: str = os.getenv('ASOAUDIT_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> bool:
        """Validate configuration values"""
        problems = []

        if cls.MIN_COMBO_LENGTH < 1:
            problems.append("ASOAUDIT_MIN_COMBO_LENGTH must be >= 1")
        if cls.MAX_COMBO_LENGTH < cls.MIN_COMBO_LENGTH:
            problems.append("ASOAUDIT_MAX_COMBO_LENGTH must be >= ASOAUDIT_MIN_COMBO_LENGTH")
        if cls.DRIFT_THRESHOLD <= 0:
            problems.append("ASOAUDIT_DRIFT_THRESHOLD must be positive")
        if cls.MAX_RECOMMENDATIONS < 0:
            problems.append("ASOAUDIT_MAX_RECOMMENDATIONS must be >= 0")

        if problems:
            raise ValueError(f"Invalid configuration: {'; '.join(problems)}")

        return True

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)

    @classmethod
    def engine_settings(cls, **overrides) -> EngineSettings:
        """
        Build EngineSettings from the environment-backed class attributes.

        Args:
            **overrides: Field values that take precedence over the environment
                (e.g. max_recommendations=5 from a CLI flag).

        Returns:
            Frozen EngineSettings instance
        """
        cls.validate()
        values = {
            "drift_threshold": cls.DRIFT_THRESHOLD,
            "min_combo_length": cls.MIN_COMBO_LENGTH,
            "max_combo_length": cls.MAX_COMBO_LENGTH,
            "max_recommendations": cls.MAX_RECOMMENDATIONS,
            "auto_detect_layers": cls.AUTO_DETECT_LAYERS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return EngineSettings(**values)


def load_yaml(path: Union[str, Path]) -> Any:
    """
    Load a YAML document with safe_load.

    Args:
        path: File to read

    Returns:
        Parsed document, or an empty dict for an empty file
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    return {} if data is None else data


def dump_yaml(data: Dict[str, Any]) -> str:
    """Serialize a mapping as block-style YAML, keys in insertion order."""
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
