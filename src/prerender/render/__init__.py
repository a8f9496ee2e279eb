"""Route snapshotting and static output layout."""

from prerender.render.fetcher import RouteSnapshotFetcher
from prerender.render.relocator import ArtifactRelocator
from prerender.render.routes import RouteMap, validate_route_map

__all__ = [
    "RouteMap",
    "validate_route_map",
    "RouteSnapshotFetcher",
    "ArtifactRelocator",
]
