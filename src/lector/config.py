"""Configuration management via .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from lector.sync.chunks import DEFAULT_CHUNK_SIZE


def _xdg_data_home() -> Path:
    return Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))


def _xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


@dataclass
class AppConfig:
    # Paths
    data_dir: Path = field(default_factory=lambda: _xdg_data_home() / "lector")
    config_dir: Path = field(default_factory=lambda: _xdg_config_home() / "lector")
    db_path: Path = field(init=False)
    fallback_path: Path = field(init=False)

    # Remote document store
    remote_url: str = ""
    remote_api_key: str = ""

    # Sync tuning
    chunk_size: int = DEFAULT_CHUNK_SIZE
    flush_delay: float = 3.0  # seconds of quiet before a progress flush
    sync_timeout: float = 5.0  # loading indicator safety timeout
    poll_interval: float = 2.0  # HTTP subscription poll period

    log_path: Path = field(init=False)

    def __post_init__(self) -> None:
        self.db_path = self.data_dir / "lector.db"
        self.fallback_path = self.data_dir / "fallback"
        self.log_path = self.data_dir / "lector.log"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_config(
    env_path: Optional[Path] = None,
    data_dir: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> AppConfig:
    """Load config from .env file. Searches CWD then config dir."""
    search_paths = [
        env_path,
        Path.cwd() / ".env",
        _xdg_config_home() / "lector" / ".env",
        Path.home() / ".env",
    ]
    for p in search_paths:
        if p and p.exists():
            load_dotenv(p)
            break

    paths: dict[str, Path] = {}
    if data_dir is not None:
        paths["data_dir"] = data_dir
    if config_dir is not None:
        paths["config_dir"] = config_dir

    return AppConfig(
        remote_url=os.getenv("LECTOR_REMOTE_URL", ""),
        remote_api_key=os.getenv("LECTOR_REMOTE_API_KEY", ""),
        chunk_size=_env_int("LECTOR_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        flush_delay=_env_float("LECTOR_FLUSH_DELAY", 3.0),
        sync_timeout=_env_float("LECTOR_SYNC_TIMEOUT", 5.0),
        poll_interval=_env_float("LECTOR_POLL_INTERVAL", 2.0),
        **paths,
    )
