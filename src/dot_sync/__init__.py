"""dot-sync: keep configuration files in sync with a cloud storage backend."""

__version__ = "0.1.0"
