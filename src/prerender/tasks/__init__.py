"""Build task helpers."""

from prerender.tasks.commands import (
    build_environment,
    build_pipeline_tasks,
    clean_build_root,
    clean_task,
    command_task,
    deploy_task,
    resolve_app_version,
    server_environment,
)
from prerender.tasks.sequencer import Task, run_task_sequence

__all__ = [
    "Task",
    "run_task_sequence",
    "command_task",
    "clean_task",
    "clean_build_root",
    "resolve_app_version",
    "build_environment",
    "server_environment",
    "build_pipeline_tasks",
    "deploy_task",
]
