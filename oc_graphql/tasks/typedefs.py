# Copyright 2024-present Kensho Technologies, LLC.
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, unique
from typing import Any, Dict, List, Mapping, Optional

# C-based module confuses pylint, which is why we disable the check below.
from ciso8601 import parse_datetime  # pylint: disable=no-name-in-module
from dataclasses_json import DataClassJsonMixin, config


@unique
class TaskStatus(Enum):
    """The lifecycle states of a task. RUNNING is the only non-terminal state."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.RUNNING


# Error recorded on tasks that were failed because they stayed RUNNING for too long.
TASK_TIMEOUT_MARKER = "TASK_TIMEOUT"

# Execution engine states, mapped to the task states they correspond to.
_EXECUTION_STATES = {
    "QUEUED": TaskStatus.RUNNING,
    "RUNNING": TaskStatus.RUNNING,
    "SUCCEEDED": TaskStatus.SUCCEEDED,
    "FAILED": TaskStatus.FAILED,
    "CANCELLED": TaskStatus.CANCELLED,
}


def parse_execution_state(state: str) -> TaskStatus:
    """Return the task status corresponding to the execution engine's state name.

    Raises:
        ValueError: if the state is not a known execution state
    """
    normalized_state = state.strip().upper() if isinstance(state, str) else state
    task_status = _EXECUTION_STATES.get(normalized_state)
    if task_status is None:
        raise ValueError(
            "Unrecognized execution state {!r}. Expected one of {}.".format(
                state, sorted(_EXECUTION_STATES)
            )
        )
    return task_status


@dataclass(frozen=True)
class ExecutionStatusReport:
    """The status of a query execution, as reported by the execution engine."""

    status: TaskStatus
    error: Optional[str] = None


@dataclass(frozen=True)
class Task:
    """A tracked asynchronous execution of a root query field.

    Instances are immutable: the convergence protocol records a transition by storing a new
    instance, and a task in a terminal state is never replaced again.
    """

    task_id: str
    field_name: str

    # Snapshot of the arguments the task was triggered with.
    arguments: Mapping[str, Any]

    status: TaskStatus
    execution_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None

    # Only ever set on SUCCEEDED tasks.
    result: Optional[List[Dict[str, Any]]] = None

    # Failure detail of FAILED or CANCELLED tasks, if any was reported.
    error: Optional[str] = None


def apply_transition(
    task: Task,
    new_status: TaskStatus,
    finished_at: datetime,
    result: Optional[List[Dict[str, Any]]] = None,
    error: Optional[str] = None,
) -> Task:
    """Return the task after transitioning it to the new status, if the transition is allowed.

    Only RUNNING tasks transition, and only to a terminal status. In every other case the task
    is returned unchanged. The result is only recorded for SUCCEEDED transitions.
    """
    if task.status is not TaskStatus.RUNNING or not new_status.is_terminal:
        return task

    return replace(
        task,
        status=new_status,
        finished_at=finished_at,
        result=result if new_status is TaskStatus.SUCCEEDED else None,
        error=None if new_status is TaskStatus.SUCCEEDED else error,
    )


def _encode_optional_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _decode_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    return parse_datetime(value) if value is not None else None


@dataclass(frozen=True)
class TaskStatusReport(DataClassJsonMixin):
    """The status of a task, as returned to a client checking on it."""

    task_id: str = field(metadata=config(field_name="taskId"))
    status: TaskStatus = field(
        metadata=config(encoder=lambda status: status.value, decoder=TaskStatus)
    )
    result: Optional[List[Dict[str, Any]]] = field(metadata=config(field_name="result"))
    started_at: datetime = field(
        metadata=config(
            field_name="startedAt",
            encoder=_encode_optional_datetime,
            decoder=_decode_optional_datetime,
        )
    )
    finished_at: Optional[datetime] = field(
        metadata=config(
            field_name="finishedAt",
            encoder=_encode_optional_datetime,
            decoder=_decode_optional_datetime,
        )
    )
    error: Optional[str] = field(default=None, metadata=config(field_name="error"))

    @classmethod
    def from_task(cls, task: Task) -> "TaskStatusReport":
        """Return the report describing the task's current state."""
        return cls(
            task_id=task.task_id,
            status=task.status,
            result=task.result if task.status is TaskStatus.SUCCEEDED else None,
            started_at=task.started_at,
            finished_at=task.finished_at,
            error=task.error,
        )
