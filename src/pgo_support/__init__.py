"""Support bundle collector for PostgresClusters managed by PGO."""

__version__ = "0.5.0"
