"""
Per-project Hierarchical Task Architecture (HTA) core: hierarchy integrity,
path-scoped persistence and the vector overlay.
"""

from .core.config import VERSION

__version__ = VERSION
