"""Sheen - autonomous task-execution engine for coding agents."""

__version__ = "0.1.0"

from sheen.config import Config
from sheen.engine import Engine

__all__ = ["Config", "Engine", "__version__"]
