"""Logging configuration for release_operations_manager."""

from release_operations_manager.logging.config import configure_logging

__all__ = ["configure_logging"]
