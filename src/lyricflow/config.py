import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_URL = "http://localhost:3001/api"
DEFAULT_STORE_DIR = Path.home() / ".lyricflow"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from the environment (and ``.env``)."""

    api_url: str = DEFAULT_API_URL
    store_dir: Path = DEFAULT_STORE_DIR
    http_timeout: float = 15.0
    health_interval: float = 15.0


def load_settings() -> Settings:
    return Settings(
        api_url=os.getenv("LYRICFLOW_API_URL", DEFAULT_API_URL).rstrip("/"),
        store_dir=Path(os.getenv("LYRICFLOW_STORE_DIR", str(DEFAULT_STORE_DIR))).expanduser(),
        http_timeout=float(os.getenv("LYRICFLOW_HTTP_TIMEOUT", 15)),
        health_interval=float(os.getenv("LYRICFLOW_HEALTH_INTERVAL", 15)),
    )
