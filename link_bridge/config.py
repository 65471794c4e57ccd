"""
LinkBridge configuration.

Provides:
- BridgeConfig dataclass with defaults
- Loading from environment variables
- Loading/saving from JSON
"""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

DEFAULT_PORT = 20809


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BridgeConfig:
    """Server configuration."""

    # WebSocket listener
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    max_message_size: int = 65_536  # Clients only send small JSON commands

    # Health/metrics HTTP endpoint (None = disabled)
    metrics_port: Optional[int] = None

    # Ableton Link clock source
    enable_link: bool = False
    link_poll_hz: float = 60.0

    # How long stop() waits for clients to acknowledge the close
    stop_grace_seconds: float = 5.0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BridgeConfig":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Load configuration from environment variables."""
        metrics_port = os.environ.get("LINKBRIDGE_METRICS_PORT")
        return cls(
            host=os.environ.get("LINKBRIDGE_HOST", "0.0.0.0"),
            port=int(os.environ.get("LINKBRIDGE_PORT", str(DEFAULT_PORT))),
            metrics_port=int(metrics_port) if metrics_port else None,
            enable_link=_env_bool("LINKBRIDGE_LINK", False),
        )

    def save(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "BridgeConfig":
        """Load configuration from JSON file, or defaults if it does not exist."""
        if not path.exists():
            return cls()
        with open(path) as f:
            return cls.from_dict(json.load(f))


# Default config file location
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "linkbridge" / "config.json"


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from file or return defaults."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    return BridgeConfig.load(path)
