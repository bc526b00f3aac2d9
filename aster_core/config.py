"""
ASTER Configuration
===================

Loads configuration from aster.yaml with environment variable overrides.

Core components never read this module's global state: the CLI loads an
AsterConfig once and hands the relevant sections to the components it builds.
"""

import os
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "aster.yaml"
DEFAULT_PORT = 11434
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
TRUE_VALUES = ("true", "1", "yes")


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class InferenceConfig:
    """Local inference backend (Ollama) settings."""
    host: str = "localhost"
    port: int = DEFAULT_PORT
    model: str = "phi3:medium"
    streaming: bool = False
    temperature: float = 0.7
    request_timeout: Optional[float] = None  # fixed override of the adaptive timeout

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class StorageConfig:
    """Session store location."""
    path: str = ".aster/store"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = ".aster/logs"
    events_log: str = "events.jsonl"
    mask_secrets: bool = True


@dataclass
class ReportConfig:
    """Report generation defaults."""
    default_context: str = ""
    decomposition_prompt: Optional[str] = None  # None: built-in prompt


@dataclass
class AsterConfig:
    """Complete ASTER configuration."""
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    report: ReportConfig = field(default_factory=ReportConfig)


# =============================================================================
# Loading
# =============================================================================

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find aster.yaml by searching upward from start_path.

    Search order:
    1. start_path / aster.yaml
    2. start_path / .aster / aster.yaml
    3. Parent directories (up to 10 levels)
    4. ~/.config/aster/aster.yaml

    Args:
        start_path: Starting directory (defaults to cwd)

    Returns:
        Path to config file or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = Path(start_path).resolve()
    for _ in range(10):
        for candidate in (current / CONFIG_FILENAME, current / ".aster" / CONFIG_FILENAME):
            if candidate.exists():
                return candidate

        parent = current.parent
        if parent == current:
            break
        current = parent

    user_config = Path.home() / ".config" / "aster" / CONFIG_FILENAME
    if user_config.exists():
        return user_config

    return None


def load_config(config_path: Optional[Path] = None) -> AsterConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Environment variables override config file values:
    - ASTER_OLLAMA_HOST -> inference.host
    - ASTER_OLLAMA_PORT -> inference.port
    - ASTER_MODEL -> inference.model
    - ASTER_STREAMING -> inference.streaming
    - ASTER_STORE_PATH -> storage.path
    - ASTER_LOG_LEVEL -> logging.level
    - ASTER_DEFAULT_CONTEXT -> report.default_context

    Args:
        config_path: Path to config file (auto-detected if None)

    Returns:
        AsterConfig instance
    """
    config = AsterConfig()

    if config_path is None:
        config_path = find_config_file()

    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = _parse_config_dict(data)
        except (OSError, yaml.YAMLError, AttributeError, TypeError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
    else:
        logger.info("No config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)

    return config


def _parse_config_dict(data: Dict[str, Any]) -> AsterConfig:
    """Parse configuration dictionary into AsterConfig."""
    config = AsterConfig()

    if "inference" in data:
        inf = data["inference"] or {}
        config.inference = InferenceConfig(
            host=inf.get("host", config.inference.host),
            port=inf.get("port", config.inference.port),
            model=inf.get("model", config.inference.model),
            streaming=bool(inf.get("streaming", config.inference.streaming)),
            temperature=inf.get("temperature", config.inference.temperature),
            request_timeout=inf.get("request_timeout", config.inference.request_timeout),
        )

    if "storage" in data:
        store = data["storage"] or {}
        config.storage = StorageConfig(path=store.get("path", config.storage.path))

    if "logging" in data:
        log = data["logging"] or {}
        config.logging = LoggingConfig(
            level=log.get("level", config.logging.level),
            log_dir=log.get("log_dir", config.logging.log_dir),
            events_log=log.get("events_log", config.logging.events_log),
            mask_secrets=log.get("mask_secrets", config.logging.mask_secrets),
        )

    if "report" in data:
        report = data["report"] or {}
        config.report = ReportConfig(
            default_context=report.get("default_context", config.report.default_context) or "",
            decomposition_prompt=report.get("decomposition_prompt"),
        )

    return config


def _apply_env_overrides(config: AsterConfig) -> AsterConfig:
    """Apply environment variable overrides to config."""
    if os.environ.get("ASTER_OLLAMA_HOST"):
        config.inference.host = os.environ["ASTER_OLLAMA_HOST"]

    if os.environ.get("ASTER_OLLAMA_PORT"):
        try:
            config.inference.port = int(os.environ["ASTER_OLLAMA_PORT"])
        except ValueError:
            logger.warning(f"Ignoring non-numeric ASTER_OLLAMA_PORT: {os.environ['ASTER_OLLAMA_PORT']}")

    if os.environ.get("ASTER_MODEL"):
        config.inference.model = os.environ["ASTER_MODEL"]

    if os.environ.get("ASTER_STREAMING"):
        config.inference.streaming = os.environ["ASTER_STREAMING"].lower() in TRUE_VALUES

    if os.environ.get("ASTER_STORE_PATH"):
        config.storage.path = os.environ["ASTER_STORE_PATH"]

    if os.environ.get("ASTER_LOG_LEVEL"):
        config.logging.level = os.environ["ASTER_LOG_LEVEL"]

    if os.environ.get("ASTER_DEFAULT_CONTEXT"):
        config.report.default_context = os.environ["ASTER_DEFAULT_CONTEXT"]

    return config


def _validate_config(config: AsterConfig) -> None:
    """Validate configuration and log warnings."""
    level = str(config.logging.level).upper()
    if level not in VALID_LOG_LEVELS:
        logger.warning(f"Unknown log level '{config.logging.level}', defaulting to 'INFO'")
        level = "INFO"
    config.logging.level = level

    try:
        port = int(config.inference.port)
    except (TypeError, ValueError):
        port = 0
    if not 1 <= port <= 65535:
        logger.warning(f"Invalid port '{config.inference.port}', defaulting to {DEFAULT_PORT}")
        port = DEFAULT_PORT
    config.inference.port = port


def save_config(config: AsterConfig, path: Path) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: AsterConfig instance
        path: Output path
    """
    data = {
        "inference": {
            "host": config.inference.host,
            "port": config.inference.port,
            "model": config.inference.model,
            "streaming": config.inference.streaming,
            "temperature": config.inference.temperature,
            "request_timeout": config.inference.request_timeout,
        },
        "storage": {"path": config.storage.path},
        "logging": {
            "level": config.logging.level,
            "log_dir": config.logging.log_dir,
            "events_log": config.logging.events_log,
            "mask_secrets": config.logging.mask_secrets,
        },
        "report": {
            "default_context": config.report.default_context,
            "decomposition_prompt": config.report.decomposition_prompt,
        },
    }

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Configuration saved to: {path}")

