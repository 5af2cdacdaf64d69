"""Configuration management for the Scale Bridge."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import yaml

from .ble.esn00_parse import FixedOffsetLayout
from .ble.transport import (
    SCALE_CHARACTERISTIC_UUID,
    SCALE_NAME_PREFIXES,
    SCALE_SERVICE_UUID,
    DeviceFilter,
)


@dataclass
class ScaleConfig:
    """Configuration for the scale BLE connection."""

    adapter: str = "hci0"
    mac: str = ""  # empty: discover by service UUID or name prefix
    name_prefixes: List[str] = None
    service_uuid: str = SCALE_SERVICE_UUID
    characteristic_uuid: str = SCALE_CHARACTERISTIC_UUID
    scan_timeout_sec: float = 20.0
    connect_timeout_sec: float = 10.0
    auto_reconnect: bool = True
    reconnect_initial_sec: float = 2.0
    reconnect_max_sec: float = 20.0
    reconnect_jitter_sec: float = 1.0

    def __post_init__(self) -> None:
        if self.name_prefixes is None:
            self.name_prefixes = list(SCALE_NAME_PREFIXES)

    def device_filter(self) -> DeviceFilter:
        return DeviceFilter(
            service_uuid=self.service_uuid,
            name_prefixes=list(self.name_prefixes),
            address=self.mac,
        )


@dataclass
class DecoderConfig:
    """Byte offsets for the fixed-offset frame layout."""

    sign_offset: int = 9
    magnitude_offset: int = 10
    unit_offset: int = 12

    def layout(self) -> FixedOffsetLayout:
        return FixedOffsetLayout(
            sign_offset=self.sign_offset,
            magnitude_offset=self.magnitude_offset,
            unit_offset=self.unit_offset,
        )


@dataclass
class LoggingConfig:
    """Configuration for the NDJSON session log."""

    dir: str = "./logs"
    file_prefix: str = "scale"
    mode: str = "regular"  # regular or verbose
    debug_dir: Optional[str] = None
    verbose_whitelist: List[str] = None

    def __post_init__(self) -> None:
        if self.verbose_whitelist is None:
            self.verbose_whitelist = []


@dataclass
class AppConfig:
    """Main application configuration."""

    scale: ScaleConfig = None
    decoder: DecoderConfig = None
    logging: LoggingConfig = None

    def __post_init__(self) -> None:
        if self.scale is None:
            self.scale = ScaleConfig()
        if self.decoder is None:
            self.decoder = DecoderConfig()
        if self.logging is None:
            self.logging = LoggingConfig()


def load_config(config_path: str) -> AppConfig:
    """Load configuration from YAML file with environment variable support."""
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if not raw_config:
        raise ValueError(f"Empty or invalid configuration file: {config_path}")
    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    _substitute_env_vars(raw_config)

    config = AppConfig()

    try:
        if "scale" in raw_config:
            config.scale = ScaleConfig(**(raw_config["scale"] or {}))
        if "decoder" in raw_config:
            config.decoder = DecoderConfig(**(raw_config["decoder"] or {}))
        if "logging" in raw_config:
            logging_data = raw_config["logging"] or {}
            # Accept a mapping of whitelisted messages as well as a list
            whitelist = logging_data.get("verbose_whitelist")
            if isinstance(whitelist, dict):
                logging_data["verbose_whitelist"] = list(whitelist.keys())
            config.logging = LoggingConfig(**logging_data)
    except TypeError as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e

    return config


def _substitute_env_vars(data: Any) -> None:
    """Recursively substitute ${VAR} strings with environment variables."""
    if isinstance(data, dict):
        for key, value in data.items():
            if _is_env_ref(value):
                data[key] = os.getenv(value[2:-1], value)
            else:
                _substitute_env_vars(value)
    elif isinstance(data, list):
        for i, item in enumerate(data):
            if _is_env_ref(item):
                data[i] = os.getenv(item[2:-1], item)
            else:
                _substitute_env_vars(item)


def _is_env_ref(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("${") and value.endswith("}")


def validate_config(config: AppConfig) -> List[str]:
    """Validate configuration and return list of validation errors."""
    errors = []

    scale = config.scale
    if not scale.mac and not scale.name_prefixes and not scale.service_uuid:
        errors.append("Scale needs a MAC address, name prefixes or a service UUID")
    if not scale.characteristic_uuid:
        errors.append("Scale characteristic_uuid is required")
    if scale.scan_timeout_sec <= 0:
        errors.append("Scale scan_timeout_sec must be positive")
    if scale.connect_timeout_sec <= 0:
        errors.append("Scale connect_timeout_sec must be positive")
    if scale.reconnect_initial_sec <= 0:
        errors.append("Scale reconnect_initial_sec must be positive")
    if scale.reconnect_max_sec < scale.reconnect_initial_sec:
        errors.append("Scale reconnect_max_sec must be at least reconnect_initial_sec")

    decoder = config.decoder
    for name in ("sign_offset", "magnitude_offset", "unit_offset"):
        if getattr(decoder, name) < 0:
            errors.append(f"Decoder {name} must not be negative")
    if decoder.sign_offset in (decoder.magnitude_offset, decoder.magnitude_offset + 1):
        errors.append("Decoder sign_offset overlaps the magnitude bytes")

    if config.logging.mode not in ("regular", "verbose"):
        errors.append(f"Unknown logging mode: {config.logging.mode}")

    # Validate paths exist or can be created
    paths = [("logging.dir", config.logging.dir)]
    if config.logging.debug_dir:
        paths.append(("logging.debug_dir", config.logging.debug_dir))
    for path_name, path_str in paths:
        try:
            Path(path_str).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create directory {path_name}: {path_str} - {e}")

    return errors
