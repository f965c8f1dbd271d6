"""
ft-screencast Configuration
===========================

This module handles configuration loading for the screencast bridge.

Configuration Sources (in order of precedence):
    1. Command line flags (highest priority)
    2. Environment variables
    3. config.yaml file
    4. Default values (lowest priority)

Environment Variable Mapping:
    FT_CAPTURE_URL        -> capture.url
    FT_ENDPOINT           -> display.endpoint
    FT_SCREEN_WIDTH       -> capture.width
    FT_SCREEN_HEIGHT      -> capture.height
    FT_FRAME_FORMAT       -> capture.format
    FT_EVERY_NTH_FRAME    -> capture.every_nth_frame
    FT_CHROME_PATH        -> browser.executable
    FT_FAILURE_THRESHOLD  -> pipeline.failure_threshold
    FT_WORKERS            -> pipeline.workers
    FT_LOG_LEVEL          -> logging.level

Example:
    from ft_screencast.config import load_config

    settings = load_config("config.yaml")
    print(settings.display.endpoint)
    print(settings.pipeline.failure_threshold)
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from ft_screencast.display.link import DEFAULT_PORT
from ft_screencast.pipeline.gate import DEFAULT_FAILURE_THRESHOLD
from ft_screencast.stream.frame import ImageFormat


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class DisplayConfig(BaseModel):
    """Flaschen-Taschen display configuration."""

    endpoint: Optional[str] = Field(
        default=None,
        description="Display address, e.g. localhost:1337",
    )
    default_port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="Port used when the endpoint has none",
    )


class CaptureConfig(BaseModel):
    """Screencast capture configuration."""

    url: Optional[str] = Field(default=None, description="URL of the page to screencast")
    width: int = Field(default=45, ge=1, description="Display width in pixels")
    height: int = Field(default=35, ge=1, description="Display height in pixels")
    quality: int = Field(
        default=100,
        ge=0,
        le=100,
        description="Compression quality requested from the browser",
    )
    format: ImageFormat = Field(
        default=ImageFormat.JPEG,
        description="Frame format: 'jpeg' or 'png'",
    )
    every_nth_frame: int = Field(
        default=1,
        ge=1,
        description="Sampling stride (1 = every frame)",
    )


class BrowserConfig(BaseModel):
    """Headless browser configuration."""

    executable: Optional[str] = Field(
        default=None,
        description="Chrome/Chromium executable (searched on PATH if unset)",
    )
    headless: bool = Field(default=True, description="Run without a window")
    startup_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Time allowed for the browser to expose DevTools",
    )
    navigation_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Time allowed for the page to load",
    )
    command_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time allowed for a DevTools command response",
    )
    extra_args: List[str] = Field(
        default_factory=list,
        description="Additional browser command line flags",
    )


class PipelineConfig(BaseModel):
    """Frame pipeline configuration."""

    failure_threshold: int = Field(
        default=DEFAULT_FAILURE_THRESHOLD,
        ge=0,
        description="Consecutive failures tolerated before capture stops",
    )
    workers: int = Field(default=1, ge=1, description="Number of frame workers")
    max_queue_size: int = Field(
        default=8,
        ge=1,
        description="Maximum size of internal frame buffer",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="ERROR", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for ft-screencast.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    display: DisplayConfig = Field(default_factory=DisplayConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Settings:
    """
    Load configuration from YAML file, environment and overrides.

    Priority (highest to lowest):
        1. overrides (command line)
        2. Environment variables
        3. YAML config file
        4. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.
        overrides: Section -> {key: value} values that win over everything
            else. None values are ignored.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path.home() / ".config" / "ft-screencast" / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: Dict[str, Any] = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    elif config_path:
        logger.warning(f"Config file {config_path} not found, using defaults")
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _normalize_sections(config_data)
    _apply_env_overrides(config_data)

    for section, values in (overrides or {}).items():
        for key, value in values.items():
            if value is not None:
                config_data.setdefault(section, {})[key] = value

    return Settings.model_validate(config_data)


def _normalize_sections(config_data: Any) -> None:
    """
    Replace empty YAML sections with mappings so overrides can fill them.

    Raises:
        ValueError: If the file or one of its sections is not a mapping
    """
    if not isinstance(config_data, dict):
        raise ValueError(f"Config file must contain a mapping, got {type(config_data).__name__}")

    for section, values in list(config_data.items()):
        if values is None:
            config_data[section] = {}
        elif not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Capture settings
    if env_url := os.environ.get("FT_CAPTURE_URL"):
        config_data.setdefault("capture", {})["url"] = env_url
    if env_width := os.environ.get("FT_SCREEN_WIDTH"):
        config_data.setdefault("capture", {})["width"] = int(env_width)
    if env_height := os.environ.get("FT_SCREEN_HEIGHT"):
        config_data.setdefault("capture", {})["height"] = int(env_height)
    if env_format := os.environ.get("FT_FRAME_FORMAT"):
        config_data.setdefault("capture", {})["format"] = env_format.lower()
    if env_nth := os.environ.get("FT_EVERY_NTH_FRAME"):
        config_data.setdefault("capture", {})["every_nth_frame"] = int(env_nth)

    # Display settings
    if env_endpoint := os.environ.get("FT_ENDPOINT"):
        config_data.setdefault("display", {})["endpoint"] = env_endpoint

    # Browser settings
    if env_chrome := os.environ.get("FT_CHROME_PATH"):
        config_data.setdefault("browser", {})["executable"] = env_chrome

    # Pipeline settings
    if env_threshold := os.environ.get("FT_FAILURE_THRESHOLD"):
        config_data.setdefault("pipeline", {})["failure_threshold"] = int(env_threshold)
    if env_workers := os.environ.get("FT_WORKERS"):
        config_data.setdefault("pipeline", {})["workers"] = int(env_workers)

    # Logging settings
    if env_log := os.environ.get("FT_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def verbosity_to_level(verbosity: int) -> Optional[str]:
    """
    Map a repeated -v count to a log level.

    Returns:
        Level name, or None to keep the configured level
    """
    if verbosity <= 0:
        return None
    if verbosity == 1:
        return "WARNING"
    if verbosity == 2:
        return "INFO"
    return "DEBUG"


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
        force=True,
    )
