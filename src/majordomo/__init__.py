"""
Majordomo - personal assistant orchestration core.

Call `configure_logging()` once at startup to set up structured logging.
"""

from .logging_config import configure_logging

__version__ = "0.1.0"

__all__ = ["configure_logging", "__version__"]
