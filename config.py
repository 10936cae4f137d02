from dataclasses import dataclass, field
from pathlib import Path
import os
import re

from errors import ConfigError
from steamcmd import DEFAULT_INSTALL_DIR_NAME

DEFAULT_STEAMCMD_PATH = "/opt/steamcmd/steamcmd.sh"
DEFAULT_METADATA_FILE = "metadata.json"
DEFAULT_MAPS_FILE_NAME = "workshop_maps.txt"
DEFAULT_TIMEOUT = 30
DEFAULT_HTTP_RETRIES = 2
DEFAULT_HTTP_RETRY_BACKOFF = 2.0
DEFAULT_HTTP_REQUEST_DELAY = 0.0
DEFAULT_TRANSFER_ATTEMPTS = 2
DEFAULT_TRANSFER_BACKOFF = 5.0
DEFAULT_LOG_LEVEL = "INFO"


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_float(value: str | None, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_list(value: str | None) -> list[str]:
    if not value:
        return []
    parts = re.split(r"[,\s]+", value.strip())
    return [part for part in (p.strip() for p in parts) if part]


@dataclass
class Config:
    app_id: str
    steamcmd_path: Path | None
    steamcmd_install_dir: Path
    output_dir: Path | None
    whitelist: list[str] = field(default_factory=list)
    metadata_file: Path = Path(DEFAULT_METADATA_FILE)
    maps_file: Path | None = None
    timeout: int = DEFAULT_TIMEOUT
    http_retries: int = DEFAULT_HTTP_RETRIES
    http_retry_backoff: float = DEFAULT_HTTP_RETRY_BACKOFF
    http_request_delay: float = DEFAULT_HTTP_REQUEST_DELAY
    transfer_attempts: int = DEFAULT_TRANSFER_ATTEMPTS
    transfer_backoff: float = DEFAULT_TRANSFER_BACKOFF
    steamcmd_verbose: bool = False
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: str | None = None

    @property
    def workshop_maps_file(self) -> Path:
        if self.maps_file is not None:
            return self.maps_file
        return Path(self.output_dir or ".") / DEFAULT_MAPS_FILE_NAME


def load_config() -> Config:
    app_id = os.environ.get("WM_APP_ID", "").strip()
    if not app_id:
        app_id = os.environ.get("STEAM_APP_ID", "").strip()

    steamcmd_path = (
        os.environ.get("WM_STEAMCMD_PATH")
        or os.environ.get("STEAMCMD_PATH", DEFAULT_STEAMCMD_PATH)
    ).strip()
    install_dir = os.environ.get("WM_STEAMCMD_INSTALL_DIR", "").strip()
    steamcmd_install_dir = (
        Path(install_dir)
        if install_dir
        else Path(steamcmd_path).parent / DEFAULT_INSTALL_DIR_NAME
    )

    output_dir = os.environ.get("WM_OUTPUT_DIR", "").strip()
    maps_file = os.environ.get("WM_MAPS_FILE", "").strip()

    return Config(
        app_id=app_id,
        steamcmd_path=Path(steamcmd_path) if steamcmd_path else None,
        steamcmd_install_dir=steamcmd_install_dir,
        output_dir=Path(output_dir) if output_dir else None,
        whitelist=parse_list(os.environ.get("WM_WHITELIST")),
        metadata_file=Path(os.environ.get("WM_METADATA_FILE") or DEFAULT_METADATA_FILE),
        maps_file=Path(maps_file) if maps_file else None,
        timeout=parse_int(os.environ.get("WM_HTTP_TIMEOUT"), DEFAULT_TIMEOUT),
        http_retries=parse_int(os.environ.get("WM_HTTP_RETRIES"), DEFAULT_HTTP_RETRIES),
        http_retry_backoff=parse_float(
            os.environ.get("WM_HTTP_RETRY_BACKOFF"), DEFAULT_HTTP_RETRY_BACKOFF
        ),
        http_request_delay=parse_float(
            os.environ.get("WM_HTTP_REQUEST_DELAY"), DEFAULT_HTTP_REQUEST_DELAY
        ),
        transfer_attempts=parse_int(
            os.environ.get("WM_TRANSFER_ATTEMPTS"), DEFAULT_TRANSFER_ATTEMPTS
        ),
        transfer_backoff=parse_float(
            os.environ.get("WM_TRANSFER_BACKOFF"), DEFAULT_TRANSFER_BACKOFF
        ),
        steamcmd_verbose=parse_bool(os.environ.get("WM_STEAMCMD_VERBOSE"), False),
        log_level=os.environ.get("WM_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        log_file=os.environ.get("WM_LOG_FILE") or None,
    )


def validate_config(config: Config) -> None:
    if not config.app_id:
        raise ConfigError("WM_APP_ID must not be empty")
    if not config.app_id.isdigit():
        raise ConfigError(f"WM_APP_ID must be numeric, got {config.app_id!r}")
    if config.output_dir is None:
        raise ConfigError("WM_OUTPUT_DIR must not be empty")
    if config.steamcmd_path is None:
        raise ConfigError("WM_STEAMCMD_PATH must not be empty")
    if config.transfer_attempts < 1:
        raise ConfigError("WM_TRANSFER_ATTEMPTS must be at least 1")
    if config.timeout <= 0:
        raise ConfigError("WM_HTTP_TIMEOUT must be positive")
