"""
Portfolio Exporter - Configuration.

============================================================
CONFIGURABLE BEHAVIOUR
============================================================

- Monitored API host and endpoint markers
- Fixed-point decoding constants
- Detail collection timeout
- Persistence (blob key, database URL)
- Export output (directory, file names, report timezone)

Configuration can be loaded from:
- Default values
- Environment variables (EXPORTER_*, .env supported)
- YAML config file

============================================================
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from datetime import timezone
from pathlib import Path
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


# Exchanged-base amounts carry three more decimal places than the asset's
# declared precision. Observed on every market so far; verify against the
# live protocol before relying on it for new markets.
BASE_AMOUNT_EXTRA_DECIMALS = 3

DEFAULT_ASSET_DECIMALS = 6

# order.leverage is reported as an integer scaled by 1e9
LEVERAGE_DECIMALS = 9


@dataclass
class ExporterConfig:
    """Main configuration for the exporter."""

    # Intercepted traffic
    api_host: str = "api.upscale.trade"
    positions_marker: str = "/portfolio/history"
    markets_marker: str = "/markets"
    config_marker: str = "/config"
    history_segment: str = "history"
    listing_segment: str = "portfolio"

    # Fixed-point decoding
    default_asset_decimals: int = DEFAULT_ASSET_DECIMALS
    base_extra_decimals: int = BASE_AMOUNT_EXTRA_DECIMALS
    leverage_decimals: int = LEVERAGE_DECIMALS

    # Detail collection
    detail_timeout_seconds: float = 60.0

    # Persistence
    storage_key: str = "upscale_exporter_data_v23"
    database_url: str = "sqlite:///portfolio_exporter.db"

    # Export
    output_dir: str = "exports"
    report_timezone: str = "UTC"
    text_file_name: str = "portfolio_history.txt"
    structured_file_name: str = "portfolio_history.json"

    def __post_init__(self) -> None:
        """Validate values."""
        if self.default_asset_decimals < 0:
            raise ConfigurationError("default_asset_decimals must be >= 0")
        if self.base_extra_decimals < 0:
            raise ConfigurationError("base_extra_decimals must be >= 0")
        if self.detail_timeout_seconds <= 0:
            raise ConfigurationError("detail_timeout_seconds must be > 0")
        try:
            self.tzinfo
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown report_timezone: {self.report_timezone}"
            ) from e

    @property
    def tzinfo(self) -> Union[timezone, ZoneInfo]:
        if self.report_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.report_timezone)

    @classmethod
    def from_env(cls) -> "ExporterConfig":
        """
        Load configuration from environment variables.

        Every field maps to EXPORTER_<FIELD_NAME>, e.g.
        - EXPORTER_API_HOST
        - EXPORTER_DETAIL_TIMEOUT_SECONDS
        - EXPORTER_DATABASE_URL
        - EXPORTER_REPORT_TIMEZONE
        """
        load_dotenv()

        overrides: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(f"EXPORTER_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            overrides[f.name] = _coerce(f.name, f.type, raw)

        return cls(**overrides)

    @classmethod
    def from_yaml(cls, path: Path) -> "ExporterConfig":
        """Load configuration from YAML file (unknown keys are ignored)."""
        try:
            with open(path, "r") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {path} must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")

        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce(name: str, type_hint: Any, raw: str) -> Any:
    """Convert an environment string to the field's declared type."""
    type_name = type_hint if isinstance(type_hint, str) else getattr(type_hint, "__name__", "")
    try:
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from e
    return raw


# Default configuration instance
_default_config: Optional[ExporterConfig] = None


def get_config() -> ExporterConfig:
    """Get the default configuration."""
    global _default_config
    if _default_config is None:
        _default_config = ExporterConfig.from_env()
    return _default_config


def set_config(config: ExporterConfig) -> None:
    """Set the default configuration."""
    global _default_config
    _default_config = config
