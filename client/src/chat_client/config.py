"""Client configuration loaded from a JSON settings file and the environment."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

DEFAULT_CONFIG_FILE = Path.home() / ".chat_client.json"
URL_ENV_VAR = "CHAT_CLIENT_URL"


@dataclass(frozen=True)
class ClientConfig:
    url: str = "ws://127.0.0.1:8080/ws"
    typing_timeout_s: float = 3.0
    history_timeout_s: float = 10.0
    max_msg_size: int = 1024 * 1024
    heartbeat_s: float | None = None
    reconnect_delay_s: float = 1.0
    max_reconnect_delay_s: float = 30.0
    max_reconnect_attempts: int = 5

    def __post_init__(self) -> None:
        if self.typing_timeout_s <= 0:
            raise ValueError("typing_timeout_s must be positive")
        if self.history_timeout_s <= 0:
            raise ValueError("history_timeout_s must be positive")
        if self.max_msg_size <= 0:
            raise ValueError("max_msg_size must be positive")
        if self.heartbeat_s is not None and self.heartbeat_s <= 0:
            raise ValueError("heartbeat_s must be positive when set")
        if self.reconnect_delay_s < 0 or self.max_reconnect_delay_s < self.reconnect_delay_s:
            raise ValueError("reconnect delays must satisfy 0 <= delay <= max delay")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be non-negative")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClientConfig":
        """Build a config from ``data``, ignoring keys that are not config fields."""

        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


def _read_settings(path: Path | str) -> Dict[str, Any]:
    try:
        data = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def load_config(
    path: Path | str | None = DEFAULT_CONFIG_FILE,
    environ: Mapping[str, str] | None = None,
) -> ClientConfig:
    """Load the client config from ``path`` and apply environment overrides.

    A missing or malformed settings file yields the defaults.
    """

    settings = _read_settings(path) if path is not None else {}
    config = ClientConfig.from_mapping(settings)
    env = os.environ if environ is None else environ
    url = env.get(URL_ENV_VAR)
    if url:
        config = replace(config, url=url)
    return config
