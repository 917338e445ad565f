"""Server configuration loaded from an optional JSON file and the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import orjson
from dotenv import load_dotenv

from ..core.catalog import DEFAULT_CATALOG_PATH

DEFAULT_CONFIG_PATH = Path("config/server.local.json")

ENV_OVERRIDES = {
    "IMPOSTER_HOST": "host",
    "PORT": "port",
    "CLIENT_URL": "client_url",
    "IMPOSTER_CATALOG": "catalog_path",
    "IMPOSTER_LOG_LEVEL": "log_level",
}


@dataclass(slots=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    client_url: str = "http://localhost:5173"
    catalog_path: Path = DEFAULT_CATALOG_PATH
    max_seats: int = 10
    min_seats: int = 3
    inactivity_timeout: float = 60 * 60
    disconnect_grace: float = 30.0
    log_level: str = "INFO"


def _coerce(config: ServerConfig, key: str, value: Any) -> Any:
    current = getattr(config, key)
    if isinstance(current, Path):
        return Path(value)
    if isinstance(current, bool):
        return str(value).lower() in {"1", "true", "yes"}
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)


def load_server_config(path: Optional[Path] = DEFAULT_CONFIG_PATH, *, env: Optional[Dict[str, str]] = None) -> ServerConfig:
    """Load configuration from disk, falling back to defaults, then apply environment overrides."""

    config = ServerConfig()
    known = {item.name for item in fields(ServerConfig)}

    if path is not None and path.exists():
        data = orjson.loads(path.read_bytes())
        for key, value in data.items():
            if key not in known:
                continue
            try:
                setattr(config, key, _coerce(config, key, value))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid value for {key} in {path}: {value!r}") from exc

    if env is None:
        load_dotenv()
        env = dict(os.environ)

    for variable, key in ENV_OVERRIDES.items():
        raw = env.get(variable)
        if raw is None or raw == "":
            continue
        try:
            setattr(config, key, _coerce(config, key, raw))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {variable}: {raw!r}") from exc

    return config
