"""Move PersistentVolumeClaim data in and out of a cluster through worker pods."""

__version__ = "0.1.0"

__all__ = ["__version__"]
