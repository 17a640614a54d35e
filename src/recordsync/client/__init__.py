"""Client module - Device identity, local state and sync."""
