"""Prerender pipeline orchestration: build, serve, snapshot, lay out, stop."""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Literal, Sequence
from uuid import uuid4

from prerender.config import AppSettings
from prerender.errors import PrerenderError
from prerender.render.fetcher import RouteSnapshotFetcher
from prerender.render.relocator import ArtifactRelocator
from prerender.server.process import LinePredicate, ProcessController
from prerender.tasks.commands import build_pipeline_tasks, clean_task, build_task, server_environment
from prerender.tasks.sequencer import Task, run_task_sequence
from prerender.utils.paths import write_json_atomically
from prerender.utils.time_utils import now_utc

LOGGER = logging.getLogger(__name__)

PipelineState = Literal[
    "idle",
    "verifying",
    "testing",
    "cleaning",
    "building",
    "starting",
    "awaiting_ready",
    "snapshotting",
    "relocated",
    "writing",
    "stopping",
    "done",
    "failed",
]

TASK_STATES: dict[str, PipelineState] = {
    "verify": "verifying",
    "test": "testing",
    "clean": "cleaning",
    "build": "building",
}


@dataclass(frozen=True, slots=True)
class PipelineOptions:
    """Runtime options for one prerender run."""

    production: bool = False


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Single terminal outcome of a prerender run."""

    run_id: str
    succeeded: bool
    state_history: tuple[PipelineState, ...]
    error: PrerenderError | None
    failed_state: PipelineState | None
    written_files: tuple[Path, ...]
    assets_dir: Path | None
    started_ts: datetime
    finished_ts: datetime
    elapsed_sec: float
    summary_path: Path | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "succeeded": self.succeeded,
            "state_history": list(self.state_history),
            "failed_state": self.failed_state,
            "error_stage": self.error.stage if self.error else None,
            "error_message": str(self.error) if self.error else None,
            "written_files": [str(path) for path in self.written_files],
            "assets_dir": str(self.assets_dir) if self.assets_dir else None,
            "started_ts": self.started_ts.isoformat(),
            "finished_ts": self.finished_ts.isoformat(),
            "elapsed_sec": round(self.elapsed_sec, 3),
        }


class PrerenderPipeline:
    """Compose build tasks, the server process, and snapshot layout into one run.

    Each instance runs once. The server is stopped on every exit path once it
    was started, and ``on_complete`` receives exactly one result.
    """

    def __init__(
        self,
        settings: AppSettings,
        *,
        options: PipelineOptions | None = None,
        tasks: Sequence[Task] | None = None,
        controller: ProcessController | None = None,
        fetcher: RouteSnapshotFetcher | None = None,
        relocator: ArtifactRelocator | None = None,
        ready: str | LinePredicate | None = None,
        on_complete: Callable[[PipelineResult], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.options = options or PipelineOptions()
        self.tasks = list(tasks) if tasks is not None else build_pipeline_tasks(
            settings, production=self.options.production
        )
        self.controller = controller or ProcessController(stop_timeout=settings.server.stop_timeout_seconds)
        self.fetcher = fetcher or RouteSnapshotFetcher(
            timeout=settings.render.fetch_timeout_seconds,
            max_workers=settings.render.max_workers,
            expected_statuses=settings.render.expected_statuses,
        )
        self.relocator = relocator or ArtifactRelocator(settings.render.assets_dirname)
        self.ready = ready if ready is not None else settings.server.ready_marker
        self.on_complete = on_complete
        self.logger = logger or LOGGER
        self.run_id = f"prerender-run-{uuid4().hex[:12]}"
        self.state: PipelineState = "idle"
        self.history: list[PipelineState] = ["idle"]
        self._result: PipelineResult | None = None
        self._failure_state: PipelineState | None = None

    def _transition(self, state: PipelineState) -> None:
        self.logger.info("pipeline.state run_id=%s from=%s to=%s", self.run_id, self.state, state)
        self.state = state
        self.history.append(state)

    def _staged(self, task: Task) -> Task:
        state = TASK_STATES.get(task.name)

        def _run() -> None:
            if state is not None:
                self._transition(state)
            task.action()

        return Task(name=task.name, action=_run)

    def _render(self) -> tuple[list[Path], Path]:
        server = self.settings.server
        build_root = self.settings.paths.build_root
        routes = self.settings.render.routes

        self._transition("starting")
        env = server_environment(self.settings, production=self.options.production)
        with self.controller.running(server.command, env=env, cwd=self.settings.paths.project_root) as handle:
            try:
                self._transition("awaiting_ready")
                self.controller.await_ready(handle, self.ready, server.ready_timeout_seconds)
                self._transition("snapshotting")
                snapshots = self.fetcher.fetch_all(server.base_address, routes)
                assets_dir = self.relocator.relocate(build_root)
                self._transition("relocated")
                self._transition("writing")
                written = self.relocator.write_snapshots(build_root, snapshots, routes)
            except BaseException:
                self._failure_state = self.state
                raise
            finally:
                self._transition("stopping")
        return written, assets_dir

    def run(self) -> PipelineResult:
        """Run the whole pipeline and return its single terminal outcome."""

        if self._result is not None or self.state != "idle":
            raise RuntimeError(f"pipeline {self.run_id} has already run")

        started_ts = now_utc()
        started_mono = time.monotonic()
        self.logger.info(
            "pipeline.start run_id=%s production=%s tasks=%s routes=%s",
            self.run_id,
            self.options.production,
            [task.name for task in self.tasks],
            sorted(self.settings.render.routes),
        )

        error: PrerenderError | None = None
        failed_state: PipelineState | None = None
        written: list[Path] = []
        assets_dir: Path | None = None
        try:
            run_task_sequence([self._staged(task) for task in self.tasks], logger=self.logger)
            written, assets_dir = self._render()
        except PrerenderError as exc:
            error = exc
        except Exception as exc:
            self.logger.exception("pipeline.unexpected_error run_id=%s state=%s", self.run_id, self.state)
            where = self._failure_state or self.state
            error = PrerenderError(f"unexpected error during {where}: {exc}", cause=exc)
            error.__cause__ = exc

        if error is None:
            self._transition("done")
        else:
            failed_state = self._failure_state or self.state
            self._transition("failed")
            self.logger.error(
                "pipeline.failed run_id=%s state=%s stage=%s error=%s",
                self.run_id,
                failed_state,
                error.stage,
                error,
            )

        result = PipelineResult(
            run_id=self.run_id,
            succeeded=error is None,
            state_history=tuple(self.history),
            error=error,
            failed_state=failed_state,
            written_files=tuple(written),
            assets_dir=assets_dir,
            started_ts=started_ts,
            finished_ts=now_utc(),
            elapsed_sec=time.monotonic() - started_mono,
        )
        self._result = result
        if result.succeeded:
            self.logger.info("pipeline.done run_id=%s elapsed_sec=%.2f", self.run_id, result.elapsed_sec)
        if self.on_complete is not None:
            self.on_complete(result)
        return result


def run_prerender_pipeline(
    settings: AppSettings,
    *,
    options: PipelineOptions | None = None,
    logger: logging.Logger | None = None,
) -> PipelineResult:
    """Run the prerender pipeline and persist a JSON run summary."""

    pipeline = PrerenderPipeline(settings, options=options, logger=logger)
    result = pipeline.run()
    summary_path = settings.paths.artifacts_root / "prerender" / result.run_id / "summary.json"
    payload = {**result.summary(), "project": settings.project.name, "project_env": settings.project.env}
    write_json_atomically(payload, summary_path)
    return dataclasses.replace(result, summary_path=summary_path)


def run_build_only(
    settings: AppSettings,
    *,
    options: PipelineOptions | None = None,
    logger: logging.Logger | None = None,
) -> None:
    """Run verify, test, clean and build without starting the server."""

    run_options = options or PipelineOptions()
    run_task_sequence(
        build_pipeline_tasks(settings, production=run_options.production),
        logger=logger or LOGGER,
    )


def serve_application(
    settings: AppSettings,
    *,
    options: PipelineOptions | None = None,
    controller: ProcessController | None = None,
    logger: logging.Logger | None = None,
) -> int:
    """Clean, build, then run the server in the foreground until it exits or is interrupted."""

    effective_logger = logger or LOGGER
    run_options = options or PipelineOptions()
    effective_controller = controller or ProcessController(stop_timeout=settings.server.stop_timeout_seconds)
    run_task_sequence(
        [clean_task(settings.paths.build_root), build_task(settings, production=run_options.production)],
        logger=effective_logger,
    )

    env = server_environment(settings, production=run_options.production, serverless=False)
    server = settings.server
    with effective_controller.running(server.command, env=env, cwd=settings.paths.project_root) as handle:
        effective_controller.await_ready(handle, server.ready_marker, server.ready_timeout_seconds)
        effective_logger.info("serve.ready address=%s pid=%s", server.base_address, handle.pid)
        try:
            return handle.process.wait()
        except KeyboardInterrupt:
            effective_logger.info("serve.interrupted pid=%s", handle.pid)
            return 0
