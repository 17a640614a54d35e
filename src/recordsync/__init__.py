"""recordsync - Offline-first record sync over a shared object store."""

__version__ = "0.1.0"
