"""Settings and logging for the eventsync CLI.

Settings live in ``~/.eventsync/config.json``::

    {
      "remote_url": "https://sheets-bridge.example.com",
      "auth_token": "...",
      "database": "/data/eventsync.db",   (optional)
      "timeout": 30.0                     (optional)
    }

The replica database and the log file default to the same directory.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from eventsync.core.config import RemoteConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DATABASE_FILENAME = "eventsync.db"
LOG_FILENAME = "eventsync.log"


def get_config_dir() -> Path:
    """Directory holding settings, the default database and the log."""
    return Path.home() / ".eventsync"


def get_config_file() -> Path:
    return get_config_dir() / "config.json"


def _read_raw() -> dict[str, Any]:
    config_file = get_config_file()
    if not config_file.exists():
        return {}
    data = json.loads(config_file.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{config_file} does not hold a JSON object")
    return data


def update_config(**values: Any) -> Path:
    """Merge values into the settings file, dropping keys set to None.

    Returns:
        Path of the settings file.
    """
    raw = _read_raw()
    for key, value in values.items():
        if value is None:
            continue
        raw[key] = value
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(raw, indent=2))
    return config_file


@dataclass(frozen=True)
class Settings:
    """Everything a command needs to open the replica and reach the remote.

    Attributes:
        database: Replica database file.
        log_file: File receiving the sync log.
        remote: Remote connection, None until ``eventsync configure`` ran.
    """

    database: Path
    log_file: Path
    remote: RemoteConfig | None = None

    @classmethod
    def load(cls) -> Settings:
        """Read the settings file, filling in defaults.

        Raises:
            ValueError: If the file holds an invalid value.
        """
        raw = _read_raw()
        config_dir = get_config_dir()

        database = config_dir / DATABASE_FILENAME
        if raw.get("database"):
            database = Path(raw["database"]).expanduser()

        remote = None
        if raw.get("remote_url") and raw.get("auth_token"):
            remote = RemoteConfig(
                remote_url=raw["remote_url"],
                token=raw["auth_token"],
                timeout=float(raw.get("timeout", RemoteConfig.timeout)),
            )

        return cls(database=database, log_file=config_dir / LOG_FILENAME, remote=remote)


def setup_logging(verbose: bool = False, log_path: Path | None = None) -> None:
    """Configure the eventsync logger.

    Args:
        verbose: Log DEBUG messages instead of INFO.
        log_path: Optional file that receives the same messages.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    package_logger = logging.getLogger("eventsync")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    package_logger.addHandler(stderr_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)
