# Copyright 2024-present Kensho Technologies, LLC.
from abc import ABCMeta, abstractmethod
from datetime import datetime
import threading
from typing import Any, Dict, List, Optional

from ..exceptions import NotFoundError, TaskConflictError
from .typedefs import Task, TaskStatus, apply_transition


class TaskStore(metaclass=ABCMeta):
    """Base class for keyed storage of tasks and of their execution correlations.

    The store owns the atomicity guarantees of task tracking:
    - a task and its (execution id -> task id) correlation are created together or not at all;
    - finish_task() reads the task's status and conditionally writes its terminal state as one
      atomic step, scoped to that single task.
    """

    @abstractmethod
    def create_task(self, task: Task) -> None:
        """Store the new task together with the correlation of its execution id.

        Raises:
            TaskConflictError: if a task with the same id, or a correlation for the same
                               execution id, already exists
        """

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        """Return the task with the given id, or None if there is no such task."""

    @abstractmethod
    def get_task_id_for_execution(self, execution_id: str) -> Optional[str]:
        """Return the id of the task correlated with the execution, or None if there is none."""

    @abstractmethod
    def finish_task(
        self,
        task_id: str,
        status: TaskStatus,
        finished_at: datetime,
        result: Optional[List[Dict[str, Any]]] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move the task to the terminal status, but only if it is currently RUNNING.

        Returns:
            True if this call performed the transition, False if the task was already terminal

        Raises:
            NotFoundError: if there is no task with the given id
        """

    @abstractmethod
    def get_running_tasks(self, started_before: datetime) -> List[Task]:
        """Return every RUNNING task that was started before the given time."""

    @abstractmethod
    def delete_execution_correlation(self, execution_id: str) -> bool:
        """Delete the correlation of the execution id. Return False if it did not exist."""


class InMemoryTaskStore(TaskStore):
    """TaskStore keeping tasks in process memory, guarded by one lock per task."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._task_locks: Dict[str, threading.Lock] = {}
        self._task_ids_by_execution: Dict[str, str] = {}

        # Only held while inserting new tasks, never while transitioning existing ones.
        self._creation_lock = threading.Lock()

    def create_task(self, task: Task) -> None:
        with self._creation_lock:
            if task.task_id in self._tasks:
                raise TaskConflictError("A task with id {} already exists.".format(task.task_id))
            if task.execution_id in self._task_ids_by_execution:
                raise TaskConflictError(
                    "Execution {} is already correlated with task {}.".format(
                        task.execution_id, self._task_ids_by_execution[task.execution_id]
                    )
                )

            # The lock must exist before the task becomes visible.
            self._task_locks[task.task_id] = threading.Lock()
            self._task_ids_by_execution[task.execution_id] = task.task_id
            self._tasks[task.task_id] = task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def get_task_id_for_execution(self, execution_id: str) -> Optional[str]:
        return self._task_ids_by_execution.get(execution_id)

    def finish_task(
        self,
        task_id: str,
        status: TaskStatus,
        finished_at: datetime,
        result: Optional[List[Dict[str, Any]]] = None,
        error: Optional[str] = None,
    ) -> bool:
        task_lock = self._task_locks.get(task_id)
        if task_lock is None:
            raise NotFoundError("No task with id {} exists.".format(task_id))

        with task_lock:
            task = self._tasks[task_id]
            new_task = apply_transition(task, status, finished_at, result=result, error=error)
            if new_task is task:
                return False
            self._tasks[task_id] = new_task
            return True

    def get_running_tasks(self, started_before: datetime) -> List[Task]:
        return [
            task
            for task in list(self._tasks.values())
            if task.status is TaskStatus.RUNNING and task.started_at < started_before
        ]

    def delete_execution_correlation(self, execution_id: str) -> bool:
        with self._creation_lock:
            return self._task_ids_by_execution.pop(execution_id, None) is not None
