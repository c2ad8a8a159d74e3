"""
QueryChat - conversation state for natural-language data analysis

Client-side reconciliation of optimistic chat updates, server replies,
side-loaded chart visualizations and conversation list refreshes.
"""

__version__ = "0.1.0"
__author__ = "QueryChat Team"

from querychat.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
