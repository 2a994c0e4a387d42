"""NSX Policy API access."""

from .client import NSXClient, build_search_query
from .endpoints import IntentPaths, NSXEndpoints

__all__ = ["NSXClient", "NSXEndpoints", "IntentPaths", "build_search_query"]
