"""Persisted sync state using a JSON-backed Pydantic model.

Records when the last sync finished, which profile is active, and an opaque
key/value map for anything else the application wants to keep between runs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class PersistedState(BaseModel):
    """Root model for the persisted state file."""

    version: int = 1
    last_sync_at: datetime | None = None
    active_profile: str | None = None
    values: dict[str, Any] = Field(default_factory=dict)


class StateStore:
    """Reads and writes the JSON state file.

    Args:
        state_file: Path to the JSON state file.
    """

    def __init__(self, state_file: str | Path) -> None:
        self._state_file = Path(state_file).expanduser()
        self._state: PersistedState | None = None

    @property
    def path(self) -> Path:
        return self._state_file

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> PersistedState:
        """Load state from disk, returning an empty state if the file
        does not exist or is empty.
        """
        if self._state_file.exists() and self._state_file.stat().st_size > 0:
            raw = self._state_file.read_text(encoding="utf-8")
            self._state = PersistedState.model_validate_json(raw)
        else:
            self._state = PersistedState()
        return self._state

    def save(self, state: PersistedState) -> None:
        """Persist *state* as pretty-printed JSON, creating parent directories."""
        self._state = state
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        self._state_file.write_text(
            state.model_dump_json(indent=2) + "\n",
            encoding="utf-8",
        )

    def _ensure_loaded(self) -> PersistedState:
        if self._state is None:
            return self.load()
        return self._state

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def last_sync_at(self) -> datetime | None:
        return self._ensure_loaded().last_sync_at

    def record_sync(self, when: datetime | None = None) -> None:
        state = self._ensure_loaded()
        state.last_sync_at = when or datetime.now(timezone.utc)
        self.save(state)

    @property
    def active_profile(self) -> str | None:
        return self._ensure_loaded().active_profile

    def set_active_profile(self, name: str | None) -> None:
        state = self._ensure_loaded()
        state.active_profile = name
        self.save(state)

    def get(self, key: str, default: Any = None) -> Any:
        return self._ensure_loaded().values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable *value* under *key* and persist."""
        state = self._ensure_loaded()
        state.values[key] = value
        self.save(state)

    def remove(self, key: str) -> None:
        """Remove *key*; a no-op if it is not present."""
        state = self._ensure_loaded()
        if state.values.pop(key, None) is not None:
            self.save(state)
