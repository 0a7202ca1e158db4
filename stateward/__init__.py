"""
stateward - Remote state lifecycle orchestrator

Provisions the object storage backend for infrastructure environments,
migrates local state into it, and backs up, restores, inspects and
drift-checks that state per deployment phase.
"""

__version__ = "0.1.0"
__author__ = "Platform Infrastructure Team"


__all__ = ["StatewardConfig", "load_config", "__version__"]

from .config import StatewardConfig, load_config
