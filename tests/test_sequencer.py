from __future__ import annotations

import pytest

from prerender.errors import TaskFailure
from prerender.tasks.sequencer import Task, run_task_sequence


def _recording_tasks(names: list[str], failing: str | None, calls: list[str]) -> list[Task]:
    def _make(name: str) -> Task:
        def _action() -> None:
            calls.append(name)
            if name == failing:
                raise RuntimeError(f"{name} broke")

        return Task(name=name, action=_action)

    return [_make(name) for name in names]


def test_runs_all_tasks_in_order() -> None:
    calls: list[str] = []
    run_task_sequence(_recording_tasks(["verify", "test", "clean", "build"], None, calls))
    assert calls == ["verify", "test", "clean", "build"]


@pytest.mark.parametrize("failing_index", [0, 1, 2, 3])
def test_failure_stops_later_tasks(failing_index: int) -> None:
    names = ["verify", "test", "clean", "build"]
    calls: list[str] = []
    tasks = _recording_tasks(names, names[failing_index], calls)

    with pytest.raises(TaskFailure) as excinfo:
        run_task_sequence(tasks)

    assert calls == names[: failing_index + 1]
    assert excinfo.value.task_name == names[failing_index]
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert excinfo.value.stage == "task"
    assert names[failing_index] in str(excinfo.value)


def test_empty_sequence_is_a_no_op() -> None:
    run_task_sequence([])
