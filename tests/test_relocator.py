from __future__ import annotations

from pathlib import Path

import pytest

from prerender.errors import RelocationError
from prerender.render.relocator import ArtifactRelocator


def _populate(build_root: Path) -> None:
    (build_root / "static" / "img").mkdir(parents=True)
    (build_root / "static" / "img" / "logo.png").write_bytes(b"\x89PNG")
    (build_root / "bundle.js").write_text("console.log(1)", encoding="utf-8")
    (build_root / "webpack-assets.json").write_text("{}", encoding="utf-8")


def test_relocate_moves_files_and_directories(tmp_path: Path) -> None:
    build_root = tmp_path / "build"
    _populate(build_root)

    assets_dir = ArtifactRelocator().relocate(build_root)

    assert assets_dir == build_root / "assets"
    assert sorted(entry.name for entry in build_root.iterdir()) == ["assets"]
    assert (assets_dir / "bundle.js").read_text(encoding="utf-8") == "console.log(1)"
    assert (assets_dir / "static" / "img" / "logo.png").read_bytes() == b"\x89PNG"


def test_relocate_reuses_existing_assets_dir(tmp_path: Path) -> None:
    build_root = tmp_path / "build"
    _populate(build_root)
    (build_root / "assets").mkdir()
    (build_root / "assets" / "fonts.css").write_text("", encoding="utf-8")

    ArtifactRelocator().relocate(build_root)

    assert sorted(entry.name for entry in (build_root / "assets").iterdir()) == [
        "bundle.js",
        "fonts.css",
        "static",
        "webpack-assets.json",
    ]


def test_relocate_collision_moves_nothing(tmp_path: Path) -> None:
    build_root = tmp_path / "build"
    _populate(build_root)
    (build_root / "assets").mkdir()
    (build_root / "assets" / "bundle.js").write_text("old", encoding="utf-8")

    with pytest.raises(RelocationError) as excinfo:
        ArtifactRelocator().relocate(build_root)

    assert excinfo.value.path == build_root / "assets" / "bundle.js"
    assert (build_root / "bundle.js").exists()
    assert (build_root / "static").exists()
    assert (build_root / "assets" / "bundle.js").read_text(encoding="utf-8") == "old"


def test_relocate_missing_build_root(tmp_path: Path) -> None:
    with pytest.raises(RelocationError):
        ArtifactRelocator().relocate(tmp_path / "nope")


def test_custom_assets_dirname(tmp_path: Path) -> None:
    build_root = tmp_path / "build"
    _populate(build_root)
    assert ArtifactRelocator("_static").relocate(build_root) == build_root / "_static"
    assert (build_root / "_static" / "bundle.js").exists()


def test_write_snapshots_creates_and_overwrites(tmp_path: Path) -> None:
    build_root = tmp_path / "build"
    build_root.mkdir()
    (build_root / "index.html").write_text("stale", encoding="utf-8")
    routes = {"/": "index.html", "/404": "404.html", "/docs": "docs/index.html"}
    snapshots = {"/": "<p>home €</p>", "/404": "<p>missing</p>", "/docs": "<p>docs</p>"}

    written = ArtifactRelocator().write_snapshots(build_root, snapshots, routes)

    assert written == [build_root / "index.html", build_root / "404.html", build_root / "docs" / "index.html"]
    assert (build_root / "index.html").read_text(encoding="utf-8") == "<p>home €</p>"
    assert (build_root / "docs" / "index.html").read_text(encoding="utf-8") == "<p>docs</p>"
    assert not [path for path in build_root.rglob("*.tmp")]


def test_write_snapshots_requires_every_route(tmp_path: Path) -> None:
    with pytest.raises(RelocationError):
        ArtifactRelocator().write_snapshots(tmp_path, {"/": "x"}, {"/": "index.html", "/404": "404.html"})
