"""Sync configuration management"""
import os
from pathlib import Path
from typing import Any, Optional

import toml  # type: ignore[import-untyped]

DEFAULT_SERVER_URL = "http://localhost:3001/api"
SERVER_URL_ENV_VAR = "SPHAIR_API_URL"

DEFAULTS: dict[str, Any] = {
    "max_retries": 3,
    "retry_delay_seconds": 5.0,
    "request_timeout_seconds": 30.0,
    "auto_sync_interval_seconds": 30.0,
    "probe_interval_seconds": 15.0,
    "health_path": "/health",
}


class SyncConfig:
    """Manage sync configuration stored in ``~/.sphair/config.toml`` under ``[sync]``.

    Values are read from disk on every access, so a server URL changed while
    operations sit in the queue applies to their replay.
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.config_dir = config_dir or Path.home() / ".sphair"
        self.config_file = self.config_dir / "config.toml"

    def _load_section(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        config: dict[str, Any] = toml.load(self.config_file)
        sync_section = config.get("sync")
        return sync_section if isinstance(sync_section, dict) else {}

    def get_server_url(self) -> str:
        """Get server URL: environment override, then config file, then default"""
        env_url = os.getenv(SERVER_URL_ENV_VAR, "").strip()
        if env_url:
            return env_url
        server_url = self._load_section().get("server_url")
        if isinstance(server_url, str) and server_url.strip():
            return server_url.strip()
        return DEFAULT_SERVER_URL

    def set_server_url(self, url: str) -> None:
        """Set server URL in config"""
        self._set_value("server_url", url)

    def get_health_url(self) -> str:
        path = str(self._get("health_path"))
        return f"{self.get_server_url().rstrip('/')}/{path.lstrip('/')}"

    def get_db_path(self) -> Optional[Path]:
        db_path = self._load_section().get("db_path")
        if isinstance(db_path, str) and db_path.strip():
            return Path(db_path).expanduser()
        return None

    @property
    def max_retries(self) -> int:
        return int(self._get("max_retries"))

    @property
    def retry_delay_seconds(self) -> float:
        return float(self._get("retry_delay_seconds"))

    @property
    def request_timeout_seconds(self) -> float:
        return float(self._get("request_timeout_seconds"))

    @property
    def auto_sync_interval_seconds(self) -> float:
        return float(self._get("auto_sync_interval_seconds"))

    @property
    def probe_interval_seconds(self) -> float:
        return float(self._get("probe_interval_seconds"))

    def _get(self, key: str) -> Any:
        value = self._load_section().get(key)
        default = DEFAULTS[key]
        if value is None or isinstance(value, bool):
            return default
        if isinstance(default, (int, float)) and not isinstance(value, (int, float)):
            return default
        return value

    def _set_value(self, key: str, value: Any) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)

        config: dict[str, Any] = {}
        if self.config_file.exists():
            config = toml.load(self.config_file)

        sync_section = config.get("sync")
        if not isinstance(sync_section, dict):
            sync_section = {}
            config["sync"] = sync_section

        sync_section[key] = value

        with open(self.config_file, "w", encoding="utf-8") as f:
            toml.dump(config, f)
