"""Reorganize build output into a static-hosting layout."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Mapping

from prerender.errors import RelocationError
from prerender.render.routes import RouteMap
from prerender.utils.paths import write_text_atomically

LOGGER = logging.getLogger(__name__)


class ArtifactRelocator:
    """Moves build artifacts under an assets directory and writes snapshots."""

    def __init__(self, assets_dirname: str = "assets") -> None:
        self.assets_dirname = assets_dirname

    def relocate(self, build_root: Path) -> Path:
        """Move every entry of ``build_root`` into its assets subdirectory."""

        assets_dir = build_root / self.assets_dirname
        try:
            entries = sorted(entry for entry in build_root.iterdir() if entry.name != self.assets_dirname)
        except OSError as exc:
            raise RelocationError(f"cannot list build root {build_root}: {exc}", build_root) from exc

        if assets_dir.exists() and not assets_dir.is_dir():
            raise RelocationError(f"{assets_dir} exists and is not a directory", assets_dir)
        collisions = [entry.name for entry in entries if (assets_dir / entry.name).exists()]
        if collisions:
            raise RelocationError(
                f"{assets_dir} already contains {', '.join(collisions)}",
                assets_dir / collisions[0],
            )

        try:
            assets_dir.mkdir(exist_ok=True)
        except OSError as exc:
            raise RelocationError(f"cannot create {assets_dir}: {exc}", assets_dir) from exc

        moved = 0
        for entry in entries:
            target = assets_dir / entry.name
            try:
                shutil.move(str(entry), str(target))
            except OSError as exc:
                raise RelocationError(
                    f"moving {entry} to {target} failed after {moved} of {len(entries)} entries: {exc}",
                    entry,
                ) from exc
            moved += 1
        LOGGER.info("relocate.done build_root=%s assets_dir=%s moved=%s", build_root, assets_dir, moved)
        return assets_dir

    def write_snapshots(
        self,
        build_root: Path,
        snapshots: Mapping[str, str],
        route_map: RouteMap,
    ) -> list[Path]:
        """Write each route's snapshot to its configured file under ``build_root``."""

        written: list[Path] = []
        for route, filename in route_map.items():
            if route not in snapshots:
                raise RelocationError(f"no snapshot was captured for route '{route}'")
            output_path = build_root / filename
            try:
                write_text_atomically(snapshots[route], output_path)
            except OSError as exc:
                raise RelocationError(f"writing {output_path} failed: {exc}", output_path) from exc
            LOGGER.info("snapshot.written route=%s path=%s", route, output_path)
            written.append(output_path)
        return written
