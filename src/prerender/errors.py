"""Typed failures raised by pipeline stages."""

from __future__ import annotations

from pathlib import Path


class PrerenderError(Exception):
    """Base class for every failure the prerender pipeline reports."""

    stage: str = "pipeline"

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class TaskFailure(PrerenderError):
    """A named build step failed before the server was started."""

    stage = "task"

    def __init__(self, task_name: str, cause: BaseException) -> None:
        super().__init__(f"task '{task_name}' failed: {cause}", cause=cause)
        self.task_name = task_name


class SpawnError(PrerenderError):
    """The application server could not be started or died before it was ready."""

    stage = "spawn"


class ReadinessTimeoutError(PrerenderError, TimeoutError):
    """The readiness marker did not show up in the server output in time."""

    stage = "readiness"

    def __init__(self, timeout: float) -> None:
        super().__init__(f"server did not report readiness within {timeout:g}s")
        self.timeout = timeout


class FetchError(PrerenderError):
    """A route snapshot could not be fetched from the running server."""

    stage = "fetch"

    def __init__(self, route: str, cause: BaseException) -> None:
        super().__init__(f"fetching route '{route}' failed: {cause}", cause=cause)
        self.route = route


class RelocationError(PrerenderError):
    """Moving build artifacts or writing snapshot files failed."""

    stage = "relocation"

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path
