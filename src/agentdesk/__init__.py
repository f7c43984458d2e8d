"""Queue-driven orchestration of CLI coding agents."""

__version__ = "0.1.0"
