"""Disk-based actor state keyed by identity (thread-safe, atomic)."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, TypedDict

from .fileio import atomic_write_json, ensure_dir, key_filename, quarantine, read_json

logger = logging.getLogger(__name__)


class Message(TypedDict):
    """A single conversation message stored in history."""

    role: str            # "user" | "assistant"
    content: str         # message text, may be empty for an empty completion


class ActorState(TypedDict):
    history: List[Message]
    fired_tasks: List[str]   # scheduled task ids already applied


def default_state() -> ActorState:
    return {"history": [], "fired_tasks": []}


class DiskStateStore:
    """JSON-based per-identity state slot.

    Layout:
        data_dir/
          state/<prefix>-<sha256(identity)>.json
              # {"identity": ..., "history": [...], "fired_tasks": [...]}

    The store itself does not serialize read-modify-write cycles; callers
    (the owning actor) guarantee a single writer per identity. The lock only
    protects file-level operations such as quarantining a corrupt file.
    """

    def __init__(self, data_dir: str) -> None:
        self.root = Path(data_dir)
        self.state_dir = ensure_dir(self.root / "state")
        self._lock = threading.RLock()

    def _path(self, identity: str) -> Path:
        return self.state_dir / key_filename(identity)

    def load(self, identity: str) -> ActorState:
        """Load the state for identity, or the default state on first use."""
        path = self._path(identity)
        if not path.exists():
            return default_state()
        try:
            raw = read_json(path)
        except (OSError, ValueError) as e:
            # Corruption fallback: keep a backup and start fresh.
            with self._lock:
                logger.warning("Corrupt state for %r (%s); starting fresh", identity, e)
                try:
                    quarantine(path)
                except OSError as move_err:
                    logger.warning("Could not move corrupt state %s aside: %s", path, move_err)
            return default_state()

        state = default_state()
        if isinstance(raw, dict):
            state["history"] = [
                {"role": str(m.get("role", "")), "content": str(m.get("content") or "")}
                for m in raw.get("history") or []
                if isinstance(m, dict)
            ]
            state["fired_tasks"] = [str(t) for t in raw.get("fired_tasks") or []]
        return state

    def save(self, identity: str, state: ActorState) -> None:
        """Persist the full state for identity atomically."""
        with self._lock:
            atomic_write_json(self._path(identity), {
                "identity": identity,
                "history": list(state["history"]),
                "fired_tasks": list(state["fired_tasks"]),
            })

    def history(self, identity: str) -> List[Message]:
        """Convenience accessor for the persisted history."""
        return self.load(identity)["history"]

    def list_identities(self) -> List[str]:
        """Return all identities with stored state."""
        out: List[str] = []
        for p in self.state_dir.glob("*.json"):
            if p.stem.endswith(".corrupt"):
                continue
            try:
                raw = read_json(p)
            except (OSError, ValueError):
                continue
            if isinstance(raw, dict) and isinstance(raw.get("identity"), str):
                out.append(raw["identity"])
        return sorted(out)
