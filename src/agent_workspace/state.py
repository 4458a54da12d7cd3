"""Persisted sync state: which paths the engine wrote, per client.

Shape on disk (``.agent/sync-state.json``)::

    {"version": 1, "files": {"claude": [".claude/skills/review/", "CLAUDE.md"]}}

Directory entries end with ``/``. A path is only recorded when the engine wrote
it, so pre-existing user files are never purged.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class SyncState:
    version: int = STATE_VERSION
    files: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "files": {client: list(paths) for client, paths in sorted(self.files.items())},
        }

    def dumps(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"

    def all_paths(self) -> List[str]:
        seen = {}
        for paths in self.files.values():
            for p in paths:
                seen[p] = None
        return list(seen)


def build_state(files: Dict[str, Iterable[str]]) -> SyncState:
    """Build a state with each client's paths de-duplicated and sorted."""
    return SyncState(
        version=STATE_VERSION,
        files={client: sorted(set(paths)) for client, paths in files.items()},
    )


def parse_state(data) -> Optional[SyncState]:
    """Validate raw JSON data. Returns None when the shape is not recognised."""
    if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
        return None
    files = data.get("files")
    if not isinstance(files, dict):
        return None
    parsed: Dict[str, List[str]] = {}
    for client, paths in files.items():
        if not isinstance(client, str) or not isinstance(paths, list):
            return None
        if not all(isinstance(p, str) for p in paths):
            return None
        parsed[client] = list(paths)
    return SyncState(version=STATE_VERSION, files=parsed)


def get_previously_synced_files(state: Optional[SyncState], client: str) -> List[str]:
    """Paths recorded for ``client``, empty if there is no state."""
    if state is None:
        return []
    return list(state.files.get(client, []))


class SyncStateStore:
    """Where sync state is read from and written to."""

    def load(self) -> Optional[SyncState]:
        raise NotImplementedError

    def save(self, state: SyncState) -> bool:
        """Persist ``state``. Returns False when nothing had to be written."""
        raise NotImplementedError


class FileSyncStateStore(SyncStateStore):
    """JSON file store. Missing or corrupted files read as "no state"."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[SyncState]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # ValueError covers both bad JSON and bytes that are not UTF-8
            logger.warning("Ignoring unreadable sync state %s: %s", self.path, e)
            return None
        state = parse_state(data)
        if state is None:
            logger.warning("Ignoring sync state with unexpected shape: %s", self.path)
        return state

    def save(self, state: SyncState) -> bool:
        content = state.dumps()
        if self._current() == content:
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(self.path)
        logger.debug("Saved sync state to %s", self.path)
        return True

    def _current(self) -> Optional[str]:
        if not self.path.is_file():
            return None
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Overwriting unreadable sync state %s: %s", self.path, e)
            return None


class MemorySyncStateStore(SyncStateStore):
    """In-memory store, used by tests and dry tooling."""

    def __init__(self, state: Optional[SyncState] = None):
        self.state = state
        self.saves = 0

    def load(self) -> Optional[SyncState]:
        return self.state

    def save(self, state: SyncState) -> bool:
        if self.state is not None and self.state.to_dict() == state.to_dict():
            return False
        self.state = state
        self.saves += 1
        return True
