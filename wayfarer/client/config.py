"""Configuration for the client library."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_STORE_DIR = Path.home() / ".wayfarer" / "device"


@dataclass
class ClientConfig:
    """Where the API lives and where the device secret is kept."""

    api_url: str
    timeout: float
    store_dir: Path

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            api_url=os.environ.get("WAYFARER_API_URL", "http://127.0.0.1:5001").rstrip("/"),
            timeout=float(os.environ.get("WAYFARER_API_TIMEOUT", "10")),
            store_dir=Path(os.environ.get("WAYFARER_DEVICE_STORE_DIR", str(DEFAULT_STORE_DIR))),
        )
