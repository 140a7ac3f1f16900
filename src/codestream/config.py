"""
CodeStream Configuration
========================

This module handles configuration loading for the sender and receiver.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    CODESTREAM_CONFIG            -> path of the YAML file
    CODESTREAM_SENDER_HOST       -> sender.host
    CODESTREAM_SENDER_PORT       -> sender.port
    CODESTREAM_MAX_ATTEMPTS      -> sender.max_attempts
    CODESTREAM_HUB_BIND_HOST     -> hub.bind_host
    CODESTREAM_HUB_BIND_PORT     -> hub.bind_port
    CODESTREAM_MAX_FRAME_BYTES   -> hub.max_frame_bytes
    CODESTREAM_DETECTOR_BACKEND  -> detection.backend
    CODESTREAM_MODEL_PATH        -> detection.model_path
    CODESTREAM_USE_DETECTION_FRAME -> decode.use_detection_frame
    CODESTREAM_PORT              -> server.port
    CODESTREAM_LOG_LEVEL         -> logging.level
    PORT                         -> server.port (container platforms)

Example:
    from codestream.config import settings

    print(settings.hub.bind_port)
    print(settings.detection.backend)
"""

import os
import logging
from pathlib import Path
from typing import List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class SenderConfig(BaseModel):
    """Producer-side capture and connection configuration."""

    host: str = Field(default="127.0.0.1", description="Hub host")
    port: int = Field(default=12345, ge=1, le=65535, description="Hub port")
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Connect attempts per start",
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Fixed delay between connect attempts",
    )
    connect_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for a single connect attempt",
    )
    source: Literal["camera", "static"] = Field(
        default="camera",
        description="Capture source: 'camera' or 'static'",
    )
    device: Union[int, str] = Field(
        default=0,
        description="Camera index or device path",
    )
    front_device: Optional[Union[int, str]] = Field(
        default=None,
        description="Camera used when facing front (None = same as device)",
    )
    static_image_path: Optional[str] = Field(
        default=None,
        description="Image replayed by the static source",
    )
    frame_interval_ms: int = Field(
        default=33,
        ge=0,
        description="Minimum spacing between frames (0 = unpaced)",
    )
    jpeg_quality: int = Field(default=90, ge=1, le=100, description="JPEG quality")
    max_width: int = Field(default=1920, ge=1, description="Requested capture width")
    max_height: int = Field(default=1080, ge=1, description="Requested capture height")
    facing: Literal["back", "front"] = Field(default="back", description="Initial camera facing")
    sensor_orientation: int = Field(
        default=0,
        description="Sensor mounting rotation in degrees",
    )


class HubConfig(BaseModel):
    """Receiver-side listener configuration."""

    bind_host: str = Field(default="127.0.0.1", description="IP address to bind")
    bind_port: int = Field(default=12345, ge=0, le=65535, description="Port to bind (0 = ephemeral)")
    max_frame_bytes: int = Field(
        default=16 * 1024 * 1024,
        ge=0,
        description="Largest accepted frame payload (0 = unlimited)",
    )
    stop_grace_seconds: float = Field(
        default=2.0,
        gt=0,
        description="How long stop waits for producer connections",
    )


class DetectionConfig(BaseModel):
    """Code detector configuration."""

    backend: Literal["opencv", "yolo", "mock"] = Field(
        default="opencv",
        description="Detector backend: 'opencv', 'yolo' or 'mock'",
    )
    model_path: str = Field(
        default="yolo8v_barcode.onnx",
        description="YOLO weights file",
    )
    confidence: float = Field(default=0.3, ge=0, le=1.0, description="YOLO confidence threshold")
    iou: float = Field(default=0.5, ge=0, le=1.0, description="YOLO NMS IoU threshold")
    device: Optional[str] = Field(default=None, description="Inference device (None = auto)")
    padding: int = Field(default=25, ge=0, description="Pixels added around each detection")
    cooldown_ms: int = Field(
        default=25,
        ge=0,
        description="Pause after each successful detector run",
    )
    detector_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Bound on one detector call",
    )
    shutdown_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="How long shutdown waits for an in-flight run",
    )


class DecodeConfig(BaseModel):
    """Region decoding configuration."""

    formats: List[str] = Field(
        default_factory=lambda: ["Code128", "QRCode", "EAN13"],
        min_length=1,
        description="Accepted symbologies",
    )
    try_rotate: bool = Field(default=True, description="Try rotated orientations")
    try_harder: bool = Field(default=True, description="Extra binarizer and downscale passes")
    try_inverted: bool = Field(default=True, description="Retry on inverted luminance")
    use_detection_frame: bool = Field(
        default=False,
        description="Decode against the detection's own frame instead of the latest",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8002, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for CodeStream.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    sender: SenderConfig = Field(default_factory=SenderConfig)
    hub: HubConfig = Field(default_factory=HubConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    decode: DecodeConfig = Field(default_factory=DecodeConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def find_config_file() -> Optional[str]:
    """Return the first config file found in the usual locations."""
    if env_path := os.environ.get("CODESTREAM_CONFIG"):
        return env_path

    search_paths = [
        Path("config.yaml"),
        Path("config.yml"),
        Path(__file__).parent.parent.parent / "config.yaml",
    ]
    for path in search_paths:
        if path.exists():
            return str(path)
    return None


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration

    Raises:
        pydantic.ValidationError: If a value is out of range
    """
    if config_path is None:
        config_path = find_config_file()

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Sender settings
    if env_host := os.environ.get("CODESTREAM_SENDER_HOST"):
        config_data.setdefault("sender", {})["host"] = env_host
    if env_port := os.environ.get("CODESTREAM_SENDER_PORT"):
        config_data.setdefault("sender", {})["port"] = int(env_port)
    if env_attempts := os.environ.get("CODESTREAM_MAX_ATTEMPTS"):
        config_data.setdefault("sender", {})["max_attempts"] = int(env_attempts)

    # Hub settings
    if env_bind := os.environ.get("CODESTREAM_HUB_BIND_HOST"):
        config_data.setdefault("hub", {})["bind_host"] = env_bind
    if env_bind_port := os.environ.get("CODESTREAM_HUB_BIND_PORT"):
        config_data.setdefault("hub", {})["bind_port"] = int(env_bind_port)
    if env_max := os.environ.get("CODESTREAM_MAX_FRAME_BYTES"):
        config_data.setdefault("hub", {})["max_frame_bytes"] = int(env_max)

    # Detection settings
    if env_backend := os.environ.get("CODESTREAM_DETECTOR_BACKEND"):
        config_data.setdefault("detection", {})["backend"] = env_backend
    if env_model := os.environ.get("CODESTREAM_MODEL_PATH"):
        config_data.setdefault("detection", {})["model_path"] = env_model

    # Decode settings
    if env_snapshot := os.environ.get("CODESTREAM_USE_DETECTION_FRAME"):
        config_data.setdefault("decode", {})["use_detection_frame"] = _env_flag(env_snapshot)

    # Server settings (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("CODESTREAM_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("CODESTREAM_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


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
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
