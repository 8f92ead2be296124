"""Per-job versioned side-info storage."""

__version__ = "0.1.0"
