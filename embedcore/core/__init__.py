"""Core utilities shared across embedcore."""

from .log import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
