"""Configuration management for Sibyl.

Loads daemon settings from ~/.config/sibyl/config.cfg, an optional
~/.config/sibyl/.env file, and SIBYL_* environment variables (in that
order, later sources win). Provides DaemonConfig for the daemon and client.
"""

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

# Default location for user configuration.
CONFIG_DIR = Path.home() / ".config" / "sibyl"
CONFIG_PATH = CONFIG_DIR / "config.cfg"
ENV_PATH = CONFIG_DIR / ".env"

ENV_PREFIX = "SIBYL_"

DEFAULT_SOCKET_PATH = Path("/tmp/sibyl.sock")
DEFAULT_LOG_DIRECTORY = Path("/tmp/sibyllog")


@dataclass
class DaemonConfig:
    socket_path: Path = DEFAULT_SOCKET_PATH
    log_directory: Path = DEFAULT_LOG_DIRECTORY
    pid_path: Path = CONFIG_DIR / "sibyld.pid"
    daemon_log_path: Path = CONFIG_DIR / "sibyld.log"
    log_level: str = "INFO"


def _strip_prefix(values: Dict[str, Optional[str]]) -> Dict[str, str]:
    data: Dict[str, str] = {}
    for key, value in values.items():
        if value is None or not key.upper().startswith(ENV_PREFIX):
            continue
        data[key[len(ENV_PREFIX):].lower()] = value
    return data


def load_raw_config(
    path: Path = CONFIG_PATH,
    env_path: Path = ENV_PATH,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Load configuration values from the config file, .env file and environment.

    Keys are returned lowercased, with the SIBYL_ prefix stripped from
    .env and environment entries (SIBYL_SOCKET_PATH -> socket_path).
    """
    cfg = configparser.ConfigParser()
    data: Dict[str, str] = {}

    if path.exists():
        cfg.read(path)
        if "DEFAULT" in cfg:
            data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})

    if env_path.exists():
        data.update(_strip_prefix(dotenv_values(env_path)))

    data.update(_strip_prefix(dict(os.environ if environ is None else environ)))

    # SIBYL_LOG is the historical name of the verbosity switch
    if "log" in data and "log_level" not in data:
        data["log_level"] = data.pop("log")

    return data


def _get_path(raw: Dict[str, str], key: str, default: Path) -> Path:
    value = str(raw.get(key, "") or "").strip()
    if not value:
        return default
    return Path(value).expanduser()


def get_daemon_config(raw: Optional[Dict[str, str]] = None) -> DaemonConfig:
    """
    Build a DaemonConfig from raw configuration values.
    Raises ValueError if the log level is not a known logging level.
    """
    if raw is None:
        raw = load_raw_config()

    log_level = str(raw.get("log_level", "INFO") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"Unknown log level '{log_level}'.")

    defaults = DaemonConfig()
    return DaemonConfig(
        socket_path=_get_path(raw, "socket_path", defaults.socket_path),
        log_directory=_get_path(raw, "log_directory", defaults.log_directory),
        pid_path=_get_path(raw, "pid_path", defaults.pid_path),
        daemon_log_path=_get_path(raw, "daemon_log_path", defaults.daemon_log_path),
        log_level=log_level,
    )
