"""Utilities for packflow.

Includes:
- Configuration loading with env var substitution
- Structured logging
- Content hashing
"""

from .config_loader import load_document, load_yaml_with_env
from .content_hash import compute_dataframe_hash, short_hash
from .logging import BoundLogger, StructuredLogger, configure_logging, logger

__all__ = [
    "load_document",
    "load_yaml_with_env",
    "compute_dataframe_hash",
    "short_hash",
    "BoundLogger",
    "StructuredLogger",
    "configure_logging",
    "logger",
]
