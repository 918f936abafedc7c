# Copyright 2024-present Kensho Technologies, LLC.
"""TaskStore persisting tasks in a relational database through SQLAlchemy."""
from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy
from sqlalchemy import JSON, Column, DateTime, MetaData, String, Table, Text, and_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..exceptions import NotFoundError, TaskConflictError
from .store import TaskStore
from .typedefs import Task, TaskStatus


DEFAULT_TASKS_TABLE_NAME = "oc_graphql_tasks"
DEFAULT_CORRELATIONS_TABLE_NAME = "oc_graphql_execution_correlations"


def make_task_tables(
    metadata: MetaData,
    tasks_table_name: str = DEFAULT_TASKS_TABLE_NAME,
    correlations_table_name: str = DEFAULT_CORRELATIONS_TABLE_NAME,
):
    """Define the task and execution correlation tables on the given MetaData object."""
    tasks_table = Table(
        tasks_table_name,
        metadata,
        Column("task_id", String(255), primary_key=True),
        Column("field_name", String(255), nullable=False),
        Column("arguments", JSON, nullable=False),
        Column("status", String(16), nullable=False, index=True),
        Column("execution_id", String(255), nullable=False),
        Column("started_at", DateTime, nullable=False),
        Column("finished_at", DateTime, nullable=True),
        Column("result", JSON, nullable=True),
        Column("error", Text, nullable=True),
    )
    correlations_table = Table(
        correlations_table_name,
        metadata,
        Column("execution_id", String(255), primary_key=True),
        Column("task_id", String(255), nullable=False),
    )
    return tasks_table, correlations_table


def _task_from_row(row: Any) -> Task:
    values = row._mapping
    return Task(
        task_id=values["task_id"],
        field_name=values["field_name"],
        arguments=values["arguments"],
        status=TaskStatus(values["status"]),
        execution_id=values["execution_id"],
        started_at=values["started_at"],
        finished_at=values["finished_at"],
        result=values["result"],
        error=values["error"],
    )


class SQLAlchemyTaskStore(TaskStore):
    """TaskStore backed by two tables in a SQLAlchemy-supported database.

    Terminal transitions are written with a single conditional UPDATE statement that only
    matches RUNNING tasks, so the database provides the per-task compare-and-set.
    """

    def __init__(
        self,
        engine: Engine,
        metadata: Optional[MetaData] = None,
        tasks_table_name: str = DEFAULT_TASKS_TABLE_NAME,
        correlations_table_name: str = DEFAULT_CORRELATIONS_TABLE_NAME,
    ) -> None:
        self._engine = engine
        self._metadata = metadata if metadata is not None else MetaData()
        self._tasks, self._correlations = make_task_tables(
            self._metadata, tasks_table_name, correlations_table_name
        )

    def create_tables(self) -> None:
        """Create the task tables if they do not exist yet."""
        self._metadata.create_all(self._engine, tables=[self._tasks, self._correlations])

    def create_task(self, task: Task) -> None:
        try:
            with self._engine.begin() as connection:
                connection.execute(
                    self._tasks.insert().values(
                        task_id=task.task_id,
                        field_name=task.field_name,
                        arguments=dict(task.arguments),
                        status=task.status.value,
                        execution_id=task.execution_id,
                        started_at=task.started_at,
                        finished_at=task.finished_at,
                        result=task.result,
                        error=task.error,
                    )
                )
                connection.execute(
                    self._correlations.insert().values(
                        execution_id=task.execution_id, task_id=task.task_id
                    )
                )
        except IntegrityError as e:
            raise TaskConflictError(
                "Task {} or execution {} already exists.".format(task.task_id, task.execution_id)
            ) from e

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._engine.connect() as connection:
            row = connection.execute(
                self._tasks.select().where(self._tasks.c.task_id == task_id)
            ).first()
        return _task_from_row(row) if row is not None else None

    def get_task_id_for_execution(self, execution_id: str) -> Optional[str]:
        with self._engine.connect() as connection:
            row = connection.execute(
                self._correlations.select().where(
                    self._correlations.c.execution_id == execution_id
                )
            ).first()
        return row._mapping["task_id"] if row is not None else None

    def finish_task(
        self,
        task_id: str,
        status: TaskStatus,
        finished_at: datetime,
        result: Optional[List[Dict[str, Any]]] = None,
        error: Optional[str] = None,
    ) -> bool:
        if not status.is_terminal:
            return False

        with self._engine.begin() as connection:
            update_result = connection.execute(
                self._tasks.update()
                .where(
                    and_(
                        self._tasks.c.task_id == task_id,
                        self._tasks.c.status == TaskStatus.RUNNING.value,
                    )
                )
                .values(
                    status=status.value,
                    finished_at=finished_at,
                    result=result if status is TaskStatus.SUCCEEDED else None,
                    error=None if status is TaskStatus.SUCCEEDED else error,
                )
            )
            if update_result.rowcount == 1:
                return True

            exists = connection.execute(
                sqlalchemy.select(self._tasks.c.task_id).where(self._tasks.c.task_id == task_id)
            ).first()

        if exists is None:
            raise NotFoundError("No task with id {} exists.".format(task_id))
        return False

    def get_running_tasks(self, started_before: datetime) -> List[Task]:
        with self._engine.connect() as connection:
            rows = connection.execute(
                self._tasks.select().where(
                    and_(
                        self._tasks.c.status == TaskStatus.RUNNING.value,
                        self._tasks.c.started_at < started_before,
                    )
                )
            ).fetchall()
        return [_task_from_row(row) for row in rows]

    def delete_execution_correlation(self, execution_id: str) -> bool:
        with self._engine.begin() as connection:
            delete_result = connection.execute(
                self._correlations.delete().where(
                    self._correlations.c.execution_id == execution_id
                )
            )
        return delete_result.rowcount == 1
