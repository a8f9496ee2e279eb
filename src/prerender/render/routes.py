"""Route map validation."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Mapping

RouteMap = Mapping[str, str]


def validate_route_map(routes: Mapping[str, str]) -> dict[str, str]:
    """Check route paths and output filenames; return a plain dict copy."""

    if not routes:
        raise ValueError("route map must contain at least one route")
    seen_outputs: dict[str, str] = {}
    for route, filename in routes.items():
        if not route.startswith("/"):
            raise ValueError(f"route '{route}' must start with '/'")
        output = PurePosixPath(filename)
        if not filename or output.is_absolute() or ".." in output.parts or str(output) == ".":
            raise ValueError(f"output filename '{filename}' for route '{route}' must be a relative path inside the build root")
        normalized = str(output)
        if normalized in seen_outputs:
            raise ValueError(
                f"routes '{seen_outputs[normalized]}' and '{route}' both write to '{filename}'"
            )
        seen_outputs[normalized] = route
    return dict(routes)
