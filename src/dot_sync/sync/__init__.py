"""Sync package: catalog, safety gate, classification, engine and watcher."""

from dot_sync.sync.catalog import FingerprintCatalog, sha256_file
from dot_sync.sync.conflict import classify, classify_file
from dot_sync.sync.engine import EngineSnapshot, ReconciliationEngine, write_local
from dot_sync.sync.profiles import DEFAULT_PROFILES, SyncProfile, get_profile
from dot_sync.sync.safety import SafetyGate, SecretFinding, sanitize
from dot_sync.sync.state import PersistedState, StateStore
from dot_sync.sync.watcher import ChangeWatcher

__all__ = [
    "ChangeWatcher",
    "DEFAULT_PROFILES",
    "EngineSnapshot",
    "FingerprintCatalog",
    "PersistedState",
    "ReconciliationEngine",
    "SafetyGate",
    "SecretFinding",
    "StateStore",
    "SyncProfile",
    "classify",
    "classify_file",
    "get_profile",
    "sanitize",
    "sha256_file",
    "write_local",
]
