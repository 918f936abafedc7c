# Copyright 2024-present Kensho Technologies, LLC.
"""Tracking of long-running root query executions, and convergence of their reported status.

Two independent paths report the completion of an execution:
- the push path, fed by notifications the execution engine sends when an execution
  changes state (delivered at least once, in any order);
- the poll path, where a client checking on a task causes the engine to be asked for the
  execution's live status.

Both paths funnel into the same transition() function, whose compare-and-set guard only ever
moves a task out of RUNNING. A task therefore reaches exactly one terminal state no matter
how the two paths interleave, and no matter how often each path reports.
"""
import copy
from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import uuid

from graphql.language.ast import DocumentNode

from ..compiler.return_values import resolve_return_values
from ..exceptions import (
    EngineError,
    NotFoundError,
    NotificationParsingError,
    TaskConflictError,
    TaskStoreError,
)
from ..schema_compilation import CompiledSchema, compile_schema
from .config import TaskTrackingConfig
from .engine import ExecutionEngine
from .notifications import PushNotification, parse_notification
from .result_shaping import make_json_safe, shape_rows
from .store import InMemoryTaskStore, TaskStore
from .typedefs import TASK_TIMEOUT_MARKER, Task, TaskStatus, TaskStatusReport


logger = logging.getLogger(__name__)


def transition(
    store: TaskStore,
    task_id: str,
    new_status: TaskStatus,
    finished_at: datetime,
    result: Optional[List[Dict[str, Any]]] = None,
    error: Optional[str] = None,
) -> Task:
    """Move the task to the new status if and only if it is currently RUNNING.

    This is the single function through which every status change of a task happens.
    Transitions out of a terminal status, and transitions to RUNNING, are no-ops.

    Args:
        store: TaskStore holding the task
        task_id: id of the task to transition
        new_status: status reported for the task's execution
        finished_at: time to record as the task's finish time, if the transition happens
        result: records to store with the task, only used when new_status is SUCCEEDED
        error: failure detail to store with the task, ignored when new_status is SUCCEEDED

    Returns:
        the task as stored after the call, whether or not the transition happened

    Raises:
        NotFoundError: if there is no task with the given id
    """
    transitioned = store.finish_task(
        task_id, new_status, finished_at, result=result, error=error
    )

    task = store.get_task(task_id)
    if task is None:
        raise AssertionError(
            "Task {} disappeared from the store while transitioning it.".format(task_id)
        )

    if transitioned:
        logger.info(
            "Task %(task_id)s transitioned to %(status)s.",
            {"task_id": task_id, "status": new_status.value},
        )
    else:
        logger.debug(
            "Ignored transition of task %(task_id)s to %(new_status)s: task is %(status)s.",
            {"task_id": task_id, "new_status": new_status.value, "status": task.status.value},
        )
    return task


class TaskTracker:
    """Trigger root query executions as tasks, and converge their reported statuses.

    The tracker holds no state of its own beyond its collaborators, so a single instance may
    be shared between any number of concurrent callers.
    """

    def __init__(
        self,
        compiled_schema: CompiledSchema,
        engine: ExecutionEngine,
        store: Optional[TaskStore] = None,
        config: Optional[TaskTrackingConfig] = None,
    ) -> None:
        self._compiled_schema = compiled_schema
        self._engine = engine
        self._store = store if store is not None else InMemoryTaskStore()
        self._config = config if config is not None else TaskTrackingConfig()

    @classmethod
    def from_schema(
        cls,
        schema: Union[str, DocumentNode],
        engine: ExecutionEngine,
        store: Optional[TaskStore] = None,
        config: Optional[TaskTrackingConfig] = None,
    ) -> "TaskTracker":
        """Compile the schema with the config's join table prefix, and track its tasks.

        Raises:
            SchemaParsingError, SchemaValidationError, CompileError: if the schema cannot be
                                                                     compiled
        """
        config = config if config is not None else TaskTrackingConfig()
        compiled_schema = compile_schema(schema, table_prefix=config.table_prefix)
        return cls(compiled_schema, engine, store=store, config=config)

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def config(self) -> TaskTrackingConfig:
        return self._config

    def _get_existing_task(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("No task with id {} exists.".format(task_id))
        return task

    def _shape_result(self, task: Task) -> List[Dict[str, Any]]:
        operation = self._compiled_schema.get_task_operation(task.field_name)
        response_type = self._compiled_schema.metadata.get_type(operation.result_shape.type_name)

        if operation.result_shape.expects_rows:
            rows = self._engine.get_query_results(task.execution_id)
            records = shape_rows(rows, response_type)
        else:
            records = [{}]

        if response_type is not None:
            declared_values = resolve_return_values(response_type, arguments=task.arguments)
            if declared_values:
                records = [dict(record, **declared_values) for record in records]
        return records

    def _converge(
        self, task: Task, status: TaskStatus, error: Optional[str] = None
    ) -> Task:
        """Apply the reported status to the task, fetching its results if it SUCCEEDED."""
        if not status.is_terminal or task.status.is_terminal:
            return transition(
                self._store, task.task_id, status, self._config.clock(), error=error
            )

        result = None
        if status is TaskStatus.SUCCEEDED:
            try:
                result = self._shape_result(task)
            except Exception as e:  # pylint: disable=broad-except
                logger.exception(
                    "Failed to fetch the results of task %(task_id)s (execution "
                    "%(execution_id)s); failing the task.",
                    {"task_id": task.task_id, "execution_id": task.execution_id},
                )
                status = TaskStatus.FAILED
                error = "Failed to fetch query results: {}".format(e)

        return transition(
            self._store,
            task.task_id,
            status,
            self._config.clock(),
            result=result,
            error=error,
        )

    def _is_expired(self, task: Task, now: datetime) -> bool:
        max_task_age = self._config.max_task_age
        return (
            max_task_age is not None
            and task.status is TaskStatus.RUNNING
            and now - task.started_at > max_task_age
        )

    def _expire(self, task: Task) -> Task:
        logger.warning(
            "Task %(task_id)s has been RUNNING since %(started_at)s, longer than the maximum "
            "task age of %(max_task_age)s; failing it.",
            {
                "task_id": task.task_id,
                "started_at": task.started_at.isoformat(),
                "max_task_age": self._config.max_task_age,
            },
        )
        return transition(
            self._store,
            task.task_id,
            TaskStatus.FAILED,
            self._config.clock(),
            error=TASK_TIMEOUT_MARKER,
        )

    def trigger(
        self,
        field_name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> TaskStatusReport:
        """Start executing the root query field's query as a new task, without waiting for it.

        Args:
            field_name: name of the root query field to execute
            arguments: the field's arguments. A snapshot is stored with the task.
            task_id: id to give the task. A random id is generated if None.

        Returns:
            TaskStatusReport of the new, RUNNING task

        Raises:
            NotFoundError: if the field is not a task operation of the schema
            ValidationError, UnsupportedTypeError, CompileError: if the query cannot be
                                                                 compiled with the arguments
            TaskConflictError: if a task with the given id already exists
            EngineError: if the execution engine fails to start the query
            TaskStoreError: if the task store fails to record the started task
        """
        operation = self._compiled_schema.get_task_operation(field_name)
        arguments = copy.deepcopy(dict(arguments or {}))
        compilation_result = self._compiled_schema.compiler.compile(operation.template, arguments)
        # The query is compiled from the exact values. The task keeps a JSON-compatible copy.
        arguments_snapshot = make_json_safe(arguments)

        if task_id is None:
            task_id = str(uuid.uuid4())
        elif self._store.get_task(task_id) is not None:
            # Checked before starting the execution so that no orphaned execution is started.
            # The store still rejects duplicates that race past this check.
            raise TaskConflictError("A task with id {} already exists.".format(task_id))

        try:
            execution_id = self._engine.start_query_execution(compilation_result.query)
        except EngineError:
            raise
        except Exception as e:
            raise EngineError(
                "The execution engine failed to start task {} for field {}: {}".format(
                    task_id, field_name, e
                )
            ) from e

        task = Task(
            task_id=task_id,
            field_name=field_name,
            arguments=arguments_snapshot,
            status=TaskStatus.RUNNING,
            execution_id=execution_id,
            started_at=self._config.clock(),
        )
        try:
            self._store.create_task(task)
        except TaskConflictError:
            raise
        except Exception as e:
            logger.exception(
                "Failed to record task %(task_id)s for field %(field_name)s, whose execution "
                "%(execution_id)s has already started.",
                {"task_id": task_id, "field_name": field_name, "execution_id": execution_id},
            )
            raise TaskStoreError(
                "Failed to record task {} for execution {}: {}".format(task_id, execution_id, e)
            ) from e

        logger.info(
            "Triggered task %(task_id)s for field %(field_name)s as execution %(execution_id)s.",
            {"task_id": task_id, "field_name": field_name, "execution_id": execution_id},
        )
        return TaskStatusReport.from_task(task)

    def handle_notification(
        self, notification: Union[PushNotification, Mapping[str, Any]]
    ) -> Optional[TaskStatusReport]:
        """Apply a pushed execution state change to the task correlated with the execution.

        Args:
            notification: PushNotification, or a raw payload accepted by parse_notification

        Returns:
            TaskStatusReport of the correlated task after applying the notification, or None
            if the execution is not correlated with any task

        Raises:
            NotificationParsingError: if the raw payload cannot be parsed
        """
        if not isinstance(notification, PushNotification):
            notification = parse_notification(notification)

        task_id = self._store.get_task_id_for_execution(notification.execution_id)
        if task_id is None:
            logger.warning(
                "Ignoring notification for execution %(execution_id)s, which is not "
                "correlated with any task.",
                {"execution_id": notification.execution_id},
            )
            return None

        task = self._get_existing_task(task_id)
        task = self._converge(task, notification.status, error=notification.error)
        return TaskStatusReport.from_task(task)

    def handle_notifications(
        self, notifications: Iterable[Union[PushNotification, Mapping[str, Any]]]
    ) -> List[TaskStatusReport]:
        """Apply a batch of notifications, logging and skipping the malformed ones.

        Returns:
            the TaskStatusReports of the tasks correlated with the batch's executions
        """
        reports = []
        for notification in notifications:
            try:
                report = self.handle_notification(notification)
            except NotificationParsingError as e:
                logger.warning("Skipping malformed notification: %(error)s", {"error": e})
                continue
            if report is not None:
                reports.append(report)
        return reports

    def poll(self, task_id: str) -> TaskStatusReport:
        """Check on the task, asking the execution engine for its status if it is RUNNING.

        Polling performs a single check and never waits for the task to finish.

        Raises:
            NotFoundError: if there is no task with the given id
            EngineError: if the execution engine fails to report the execution's status
        """
        task = self._get_existing_task(task_id)
        if task.status.is_terminal:
            return TaskStatusReport.from_task(task)

        if self._is_expired(task, self._config.clock()):
            return TaskStatusReport.from_task(self._expire(task))

        try:
            status_report = self._engine.get_query_execution_status(task.execution_id)
        except EngineError:
            raise
        except Exception as e:
            raise EngineError(
                "The execution engine failed to report the status of execution {}: {}".format(
                    task.execution_id, e
                )
            ) from e

        logger.debug(
            "Execution %(execution_id)s of task %(task_id)s reported as %(status)s.",
            {
                "execution_id": task.execution_id,
                "task_id": task_id,
                "status": status_report.status.value,
            },
        )
        task = self._converge(task, status_report.status, error=status_report.error)
        return TaskStatusReport.from_task(task)

    def get(self, task_id: str) -> TaskStatusReport:
        """Return the task's last known status, without consulting the execution engine.

        Raises:
            NotFoundError: if there is no task with the given id
        """
        return TaskStatusReport.from_task(self._get_existing_task(task_id))

    def expire_stale_tasks(self, now: Optional[datetime] = None) -> List[TaskStatusReport]:
        """Fail every task that has been RUNNING for longer than the maximum task age.

        Returns:
            the TaskStatusReports of the tasks this call failed
        """
        if self._config.max_task_age is None:
            return []

        now = now if now is not None else self._config.clock()
        stale_tasks = self._store.get_running_tasks(now - self._config.max_task_age)

        expired_reports = []
        for stale_task in stale_tasks:
            task = self._expire(stale_task)
            if task.status is TaskStatus.FAILED and task.error == TASK_TIMEOUT_MARKER:
                expired_reports.append(TaskStatusReport.from_task(task))
        return expired_reports

    def forget_execution(self, task_id: str) -> bool:
        """Drop the execution correlation of a terminal task.

        Notifications arriving afterwards for its execution are ignored.

        Returns:
            True if a correlation was dropped, False if the task is still RUNNING or its
            correlation was already dropped

        Raises:
            NotFoundError: if there is no task with the given id
        """
        task = self._get_existing_task(task_id)
        if not task.status.is_terminal:
            return False
        return self._store.delete_execution_correlation(task.execution_id)
