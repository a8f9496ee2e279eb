"""Build tasks backed by external commands and environment resolution."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

from prerender.config import AppSettings
from prerender.tasks.sequencer import Task

LOGGER = logging.getLogger(__name__)


def _merged_env(overrides: Mapping[str, str] | None, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    merged = dict(os.environ if environ is None else environ)
    if overrides:
        merged.update(overrides)
    return merged


def command_task(
    name: str,
    command: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> Task:
    """Create a task that runs an external command with inherited stdio."""

    argv = list(command)

    def _run() -> None:
        LOGGER.info("command.run task=%s argv=%s cwd=%s", name, argv, cwd)
        subprocess.run(argv, check=True, env=_merged_env(env), cwd=cwd)

    return Task(name=name, action=_run)


def clean_build_root(build_root: Path) -> int:
    """Delete everything inside the build root, keeping the root itself."""

    build_root.mkdir(parents=True, exist_ok=True)
    removed = 0
    for entry in sorted(build_root.iterdir()):
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1
    LOGGER.info("clean.done build_root=%s removed=%s", build_root, removed)
    return removed


def clean_task(build_root: Path) -> Task:
    """Create the task that empties the build output directory."""

    return Task(name="clean", action=lambda: clean_build_root(build_root))


def resolve_app_version(
    settings: AppSettings,
    *,
    cwd: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Return the build version identifier.

    Hosted builders that export the source version (and ship no git checkout)
    are trusted as-is; otherwise the current git commit is used.
    """

    effective_environ = os.environ if environ is None else environ
    source_version = effective_environ.get(settings.environment.source_version_var)
    if source_version:
        return source_version
    completed = subprocess.run(
        ["git", "rev-parse", "HEAD"],
        check=True,
        capture_output=True,
        text=True,
        cwd=cwd,
    )
    return completed.stdout.strip()


def mode_name(production: bool) -> str:
    return "production" if production else "development"


def build_environment(
    settings: AppSettings,
    *,
    production: bool,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment overrides handed to the build command."""

    env_names = settings.environment
    version = resolve_app_version(settings, cwd=settings.paths.project_root, environ=environ)
    return {
        env_names.mode_var: mode_name(production),
        env_names.version_var: version,
    }


def server_environment(
    settings: AppSettings,
    *,
    production: bool,
    serverless: bool = True,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Full environment for the application server.

    ``serverless`` flags static-render mode; plain ``serve`` runs leave it unset.
    """

    env_names = settings.environment
    overrides = {env_names.mode_var: mode_name(production)}
    if serverless:
        overrides[env_names.serverless_var] = "true"
    overrides.update(settings.server.extra_env)
    return _merged_env(overrides, environ)


def build_task(settings: AppSettings, *, production: bool) -> Task:
    """Create the build task; the version is resolved when the task runs."""

    def _run() -> None:
        env = build_environment(settings, production=production)
        LOGGER.info("build.env %s", env)
        command_task(
            "build",
            settings.tasks.build_command,
            env=env,
            cwd=settings.paths.project_root,
        ).action()

    return Task(name="build", action=_run)


def build_pipeline_tasks(settings: AppSettings, *, production: bool) -> list[Task]:
    """Ordered verify, test, clean and build tasks."""

    cwd = settings.paths.project_root
    return [
        command_task("verify", settings.tasks.verify_command, cwd=cwd),
        command_task("test", settings.tasks.test_command, cwd=cwd),
        clean_task(settings.paths.build_root),
        build_task(settings, production=production),
    ]


def deploy_task(settings: AppSettings) -> Task:
    """Create the task that publishes the rendered build directory."""

    return command_task("deploy", settings.deploy.command, cwd=settings.paths.project_root)
