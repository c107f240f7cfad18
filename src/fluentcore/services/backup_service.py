"""Last-resort local backup for writes the backend kept rejecting."""
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fluentcore.config import settings

logger = logging.getLogger(__name__)


class LocalBackup:
    """JSON file mapping a storage key to its last undeliverable value."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else settings.paths.backup_file
        self._entries: Optional[Dict[str, Dict[str, Any]]] = None

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Get all backed-up entries as ``{key: {"value", "timestamp"}}``."""
        if self._entries is None:
            self._entries = {}
            if self.path.exists():
                try:
                    self._entries = json.loads(self.path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    logger.error("Failed to read local backup %s: %s", self.path, e)
        return self._entries

    def get(self, key: str) -> Optional[Any]:
        entry = self.load().get(key)
        return entry["value"] if entry else None

    def __contains__(self, key: str) -> bool:
        return key in self.load()

    def save(self, key: str, value: Any) -> bool:
        """Back up a value. Returns False if the backup itself could not be written."""
        entries = self.load()
        entries[key] = {"value": value, "timestamp": datetime.now(UTC).isoformat()}
        return self._write(entries)

    def discard(self, key: str) -> None:
        """Forget the backup of a key once it has been durably written."""
        entries = self.load()
        if key in entries:
            del entries[key]
            self._write(entries)

    def _write(self, entries: Dict[str, Dict[str, Any]]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(entries), encoding="utf-8")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write local backup %s: %s", self.path, e)
            return False
