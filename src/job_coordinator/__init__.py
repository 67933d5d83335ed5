"""Background job orchestration and worker coordination service."""

__version__ = "0.1.0"
