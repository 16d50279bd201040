"""Picvault - image hosting with a consistency-preserving client listing cache."""

__version__ = "0.1.0"

from picvault.core.config import PicvaultConfig, config

__all__ = [
    "PicvaultConfig",
    "config",
]
