"""NSX resource synchronizer - cache, diff and hierarchical writes for NSX policy objects."""

from .config import SyncerConfig

__version__ = "0.1.0"
__all__ = ["SyncerConfig", "__version__"]
