"""Local persistent key-value store used when the backend is unreachable.

Each key maps to one JSON document on disk (``<store_dir>/<key>.json``),
the way a browser keeps one serialised string per ``localStorage`` key.
Collections are JSON arrays and are always rewritten whole: read, mutate,
write. There is no locking; two writers racing on the same key lose one
update.
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "lyricflow_current_user"
AUTH_TOKEN_KEY = "lyricflow_auth_token"
LOCAL_USERS_KEY = "lyricflow_local_users"
LOCAL_SONGS_KEY = "lyricflow_local_songs"

LOCAL_ID_PREFIX = "local_"


def is_local_id(record_id: str | None) -> bool:
    return bool(record_id) and record_id.startswith(LOCAL_ID_PREFIX)


class LocalStore:
    """JSON documents keyed by name under a single directory."""

    def __init__(self, store_dir: Path | str):
        self.store_dir = Path(store_dir)

    def _path(self, key: str) -> Path:
        return self.store_dir / f"{key}.json"

    def get_item(self, key: str):
        """Return the decoded value for *key*, or None if it was never set."""
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def set_item(self, key: str, value) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(json.dumps(value), encoding="utf-8")
        logger.debug("Wrote local key %s", key)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def read_collection(self, key: str) -> list[dict]:
        return self.get_item(key) or []

    def write_collection(self, key: str, records: list[dict]) -> None:
        self.set_item(key, records)
