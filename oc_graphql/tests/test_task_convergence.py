# Copyright 2024-present Kensho Technologies, LLC.
from collections import Counter
from datetime import timedelta
import threading
import unittest

from ..exceptions import (
    EngineError,
    NotFoundError,
    TaskConflictError,
    TaskStoreError,
    ValidationError,
)
from ..schema_compilation import compile_schema
from ..tasks.config import TaskTrackingConfig
from ..tasks.convergence import TaskTracker, transition
from ..tasks.store import InMemoryTaskStore
from ..tasks.typedefs import TASK_TIMEOUT_MARKER, TaskStatus, TaskStatusReport
from .test_helpers import FakeClock, FakeExecutionEngine, get_schema_text


SEARCH_RESULT_ROWS = [
    ["id", "name", "age", "active", "internal_score"],
    ["1", "O'Brien", "42", "true", "0.5"],
    ["2", "Ann", "", "false", "0.7"],
]


class CountingTaskStore(InMemoryTaskStore):
    """InMemoryTaskStore counting the terminal writes it performs per task."""

    def __init__(self) -> None:
        super().__init__()
        self.terminal_writes: Counter = Counter()
        self._counter_lock = threading.Lock()

    def finish_task(self, task_id, status, finished_at, result=None, error=None):
        transitioned = super().finish_task(
            task_id, status, finished_at, result=result, error=error
        )
        if transitioned:
            with self._counter_lock:
                self.terminal_writes[task_id] += 1
        return transitioned


class TaskTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.engine = FakeExecutionEngine()
        self.store = CountingTaskStore()
        self.tracker = TaskTracker(
            compile_schema(get_schema_text()),
            self.engine,
            store=self.store,
            config=TaskTrackingConfig(max_task_age=timedelta(minutes=30), clock=self.clock),
        )

    def _trigger_search(self, name: str = "O'Brien", **kwargs) -> TaskStatusReport:
        return self.tracker.trigger("searchUsers", {"name": name, "minAge": 21}, **kwargs)

    def _get_execution_id(self, task_id: str) -> str:
        return self.store.get_task(task_id).execution_id

    def test_poll_before_and_after_completion(self) -> None:
        report = self._trigger_search()
        self.assertEqual(
            ["SELECT id, name, age, active FROM users WHERE name = 'O''Brien' AND age >= 21"],
            self.engine.started_queries,
        )

        report = self.tracker.poll(report.task_id)
        self.assertEqual(TaskStatus.RUNNING, report.status)
        self.assertIsNone(report.result)
        self.assertIsNone(report.finished_at)

        self.clock.advance(timedelta(minutes=5))
        self.engine.succeed(self._get_execution_id(report.task_id), SEARCH_RESULT_ROWS)
        report = self.tracker.poll(report.task_id)

        self.assertEqual(TaskStatus.SUCCEEDED, report.status)
        expected_result = [
            {"id": "1", "name": "O'Brien", "age": 42, "active": True, "searchedName": "O'Brien"},
            {"id": "2", "name": "Ann", "age": None, "active": False, "searchedName": "O'Brien"},
        ]
        self.assertEqual(expected_result, report.result)
        self.assertEqual(
            {
                "taskId": report.task_id,
                "status": "SUCCEEDED",
                "result": expected_result,
                "startedAt": "2024-03-01T12:00:00",
                "finishedAt": "2024-03-01T12:05:00",
                "error": None,
            },
            report.to_dict(),
        )

    def test_push_completion(self) -> None:
        report = self._trigger_search()
        execution_id = self._get_execution_id(report.task_id)
        self.engine.succeed(execution_id, SEARCH_RESULT_ROWS)

        pushed_report = self.tracker.handle_notification(
            {"execution_id": execution_id, "status": "SUCCEEDED"}
        )
        self.assertEqual(TaskStatus.SUCCEEDED, pushed_report.status)
        self.assertEqual(2, len(pushed_report.result))

        # Polling a terminal task does not consult the engine again.
        status_checks = self.engine.status_check_count
        self.assertEqual(pushed_report, self.tracker.poll(report.task_id))
        self.assertEqual(status_checks, self.engine.status_check_count)

    def test_query_state_change_event(self) -> None:
        report = self._trigger_search()
        execution_id = self._get_execution_id(report.task_id)
        event = {
            "detail-type": "Athena Query State Change",
            "source": "aws.athena",
            "time": "2024-03-01T12:01:00Z",
            "detail": {
                "queryExecutionId": execution_id,
                "currentState": "FAILED",
                "previousState": "RUNNING",
                "stateChangeReason": "Table users does not exist",
            },
        }
        pushed_report = self.tracker.handle_notification(event)
        self.assertEqual(TaskStatus.FAILED, pushed_report.status)
        self.assertEqual("Table users does not exist", pushed_report.error)
        self.assertIsNone(pushed_report.result)

    def test_duplicate_and_late_notifications_are_no_ops(self) -> None:
        report = self._trigger_search()
        execution_id = self._get_execution_id(report.task_id)
        self.engine.succeed(execution_id, SEARCH_RESULT_ROWS)

        first_report = self.tracker.handle_notification(
            {"execution_id": execution_id, "status": "SUCCEEDED"}
        )
        self.clock.advance(timedelta(minutes=1))
        for status in ("SUCCEEDED", "FAILED", "CANCELLED", "RUNNING"):
            later_report = self.tracker.handle_notification(
                {"execution_id": execution_id, "status": status}
            )
            self.assertEqual(first_report, later_report)

        self.assertEqual(1, self.store.terminal_writes[report.task_id])
        self.assertEqual(1, self.engine.result_fetch_count)

    def test_non_terminal_notifications(self) -> None:
        report = self._trigger_search()
        execution_id = self._get_execution_id(report.task_id)
        for status in ("QUEUED", "RUNNING"):
            pushed_report = self.tracker.handle_notification(
                {"execution_id": execution_id, "status": status}
            )
            self.assertEqual(TaskStatus.RUNNING, pushed_report.status)
            self.assertIsNone(pushed_report.finished_at)

    def test_poll_observes_failure_and_cancellation(self) -> None:
        failed = self._trigger_search("a")
        cancelled = self._trigger_search("b")
        self.engine.fail(self._get_execution_id(failed.task_id), "Out of memory")
        self.engine.cancel(self._get_execution_id(cancelled.task_id))

        failed_report = self.tracker.poll(failed.task_id)
        self.assertEqual(TaskStatus.FAILED, failed_report.status)
        self.assertEqual("Out of memory", failed_report.error)
        self.assertEqual(TaskStatus.CANCELLED, self.tracker.poll(cancelled.task_id).status)

    def test_concurrent_push_and_poll(self) -> None:
        for _ in range(25):
            report = self._trigger_search()
            execution_id = self._get_execution_id(report.task_id)
            self.engine.succeed(execution_id, SEARCH_RESULT_ROWS)

            barrier = threading.Barrier(2)
            reports = []

            def push():
                barrier.wait()
                reports.append(
                    self.tracker.handle_notification(
                        {"execution_id": execution_id, "status": "SUCCEEDED"}
                    )
                )

            def poll():
                barrier.wait()
                reports.append(self.tracker.poll(report.task_id))

            threads = [threading.Thread(target=push), threading.Thread(target=poll)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            self.assertEqual(2, len(reports))
            self.assertEqual(1, self.store.terminal_writes[report.task_id])
            self.assertEqual({TaskStatus.SUCCEEDED}, {report.status for report in reports})
            self.assertEqual(1, len({report.finished_at for report in reports}))
            self.assertEqual(reports[0].result, reports[1].result)

    def test_result_fetch_failure_fails_task(self) -> None:
        report = self._trigger_search()
        self.engine.succeed(self._get_execution_id(report.task_id), SEARCH_RESULT_ROWS)
        self.engine.result_error = EngineError("Result bucket unavailable")

        with self.assertLogs("oc_graphql.tasks.convergence", level="ERROR"):
            report = self.tracker.poll(report.task_id)
        self.assertEqual(TaskStatus.FAILED, report.status)
        self.assertIn("Result bucket unavailable", report.error)
        self.assertIsNone(report.result)
        self.assertIsNotNone(report.finished_at)

    def test_malformed_results_fail_task(self) -> None:
        report = self._trigger_search()
        rows = [["id", "age"], ["1", "forty-two"]]
        self.engine.succeed(self._get_execution_id(report.task_id), rows)

        with self.assertLogs("oc_graphql.tasks.convergence", level="ERROR"):
            report = self.tracker.poll(report.task_id)
        self.assertEqual(TaskStatus.FAILED, report.status)

    def test_results_of_primitive_field(self) -> None:
        report = self.tracker.trigger("countUsers")
        self.engine.succeed(self._get_execution_id(report.task_id), [["count"], ["3"]])
        self.assertEqual([{"count": "3"}], self.tracker.poll(report.task_id).result)

    def test_unknown_tasks(self) -> None:
        with self.assertRaises(NotFoundError):
            self.tracker.poll("missing")
        with self.assertRaises(NotFoundError):
            self.tracker.get("missing")
        with self.assertRaises(NotFoundError):
            self.tracker.forget_execution("missing")
        with self.assertRaises(NotFoundError):
            transition(self.store, "missing", TaskStatus.FAILED, self.clock())

    def test_unknown_execution_is_ignored(self) -> None:
        with self.assertLogs("oc_graphql.tasks.convergence", level="WARNING"):
            report = self.tracker.handle_notification(
                {"execution_id": "not-ours", "status": "SUCCEEDED"}
            )
        self.assertIsNone(report)

    def test_notification_batches(self) -> None:
        first = self._trigger_search("a")
        second = self._trigger_search("b")
        self.engine.succeed(self._get_execution_id(first.task_id), SEARCH_RESULT_ROWS)

        batch = [
            {"execution_id": self._get_execution_id(first.task_id), "status": "SUCCEEDED"},
            {"execution_id": self._get_execution_id(second.task_id), "status": "EXPLODED"},
            {"status": "FAILED"},
            {"execution_id": "not-ours", "status": "FAILED"},
            {"execution_id": self._get_execution_id(second.task_id), "status": "CANCELLED"},
        ]
        with self.assertLogs("oc_graphql.tasks.convergence", level="WARNING") as logs:
            reports = self.tracker.handle_notifications(batch)

        self.assertEqual(3, len(logs.output))
        self.assertEqual(
            [(first.task_id, TaskStatus.SUCCEEDED), (second.task_id, TaskStatus.CANCELLED)],
            [(report.task_id, report.status) for report in reports],
        )

    def test_trigger_unknown_or_non_task_field(self) -> None:
        for field_name in ("missing", "createUser"):
            with self.assertRaises(NotFoundError):
                self.tracker.trigger(field_name, {})
        self.assertEqual([], self.engine.started_queries)

    def test_trigger_with_invalid_arguments(self) -> None:
        with self.assertRaises(ValidationError):
            self.tracker.trigger("searchUsers", {"name": "a", "minAge": float("inf")})
        self.assertEqual([], self.engine.started_queries)

    def test_trigger_engine_failure(self) -> None:
        self.engine.start_error = RuntimeError("Engine unavailable")
        with self.assertRaises(EngineError):
            self._trigger_search(task_id="task-1")
        with self.assertRaises(NotFoundError):
            self.tracker.get("task-1")

    def test_trigger_store_failure(self) -> None:
        class UnavailableTaskStore(InMemoryTaskStore):
            def create_task(self, task):
                raise RuntimeError("Store unavailable")

        tracker = TaskTracker(
            compile_schema(get_schema_text()), self.engine, store=UnavailableTaskStore()
        )
        with self.assertLogs("oc_graphql.tasks.convergence", level="ERROR"):
            with self.assertRaises(TaskStoreError) as context:
                tracker.trigger("countUsers", task_id="task-1")
        self.assertIn("execution-1", str(context.exception))
        self.assertIsNone(tracker.store.get_task("task-1"))

    def test_trigger_with_duplicate_task_id(self) -> None:
        report = self._trigger_search(task_id="task-1")
        self.assertEqual("task-1", report.task_id)
        with self.assertRaises(TaskConflictError):
            self._trigger_search(task_id="task-1")
        self.assertEqual(1, len(self.engine.started_queries))

    def test_arguments_are_snapshotted(self) -> None:
        arguments = {"name": "Ann", "minAge": 21}
        report = self.tracker.trigger("searchUsers", arguments)
        arguments["name"] = "Bob"
        self.assertEqual(
            {"name": "Ann", "minAge": 21}, self.store.get_task(report.task_id).arguments
        )

    def test_generated_task_ids_are_unique(self) -> None:
        task_ids = {self._trigger_search().task_id for _ in range(10)}
        self.assertEqual(10, len(task_ids))

    def test_get_does_not_consult_engine(self) -> None:
        report = self._trigger_search()
        self.engine.succeed(self._get_execution_id(report.task_id), SEARCH_RESULT_ROWS)
        self.assertEqual(TaskStatus.RUNNING, self.tracker.get(report.task_id).status)
        self.assertEqual(0, self.engine.status_check_count)

    def test_stale_tasks_expire(self) -> None:
        stale = self._trigger_search("a")
        self.clock.advance(timedelta(minutes=20))
        fresh = self._trigger_search("b")
        self.clock.advance(timedelta(minutes=15))

        with self.assertLogs("oc_graphql.tasks.convergence", level="WARNING"):
            expired_reports = self.tracker.expire_stale_tasks()
        self.assertEqual([stale.task_id], [report.task_id for report in expired_reports])
        self.assertEqual(TaskStatus.FAILED, expired_reports[0].status)
        self.assertEqual(TASK_TIMEOUT_MARKER, expired_reports[0].error)
        self.assertEqual(TaskStatus.RUNNING, self.tracker.get(fresh.task_id).status)

        # A late success report does not resurrect the expired task.
        self.engine.succeed(self._get_execution_id(stale.task_id), SEARCH_RESULT_ROWS)
        report = self.tracker.handle_notification(
            {"execution_id": self._get_execution_id(stale.task_id), "status": "SUCCEEDED"}
        )
        self.assertEqual(TaskStatus.FAILED, report.status)
        self.assertEqual(0, self.engine.result_fetch_count)

    def test_poll_expires_stale_task(self) -> None:
        report = self._trigger_search()
        self.clock.advance(timedelta(hours=1))
        with self.assertLogs("oc_graphql.tasks.convergence", level="WARNING"):
            report = self.tracker.poll(report.task_id)
        self.assertEqual(TaskStatus.FAILED, report.status)
        self.assertEqual(TASK_TIMEOUT_MARKER, report.error)
        self.assertEqual(0, self.engine.status_check_count)

    def test_expiry_can_be_disabled(self) -> None:
        tracker = TaskTracker(
            compile_schema(get_schema_text()),
            self.engine,
            store=self.store,
            config=TaskTrackingConfig(max_task_age=None, clock=self.clock),
        )
        report = tracker.trigger("countUsers")
        self.clock.advance(timedelta(days=7))
        self.assertEqual([], tracker.expire_stale_tasks())
        self.assertEqual(TaskStatus.RUNNING, tracker.poll(report.task_id).status)

    def test_tracker_from_schema_uses_table_prefix(self) -> None:
        schema_text = """
            type Query {
                groupCount(group: String!): Int @sql_query(query: "SELECT count(*) FROM $join_table(user_groups) WHERE group_name = $args.group")
            }
        """
        tracker = TaskTracker.from_schema(
            schema_text, self.engine, config=TaskTrackingConfig(table_prefix="prod_")
        )
        tracker.trigger("groupCount", {"group": "admins"})
        self.assertEqual(
            ["SELECT count(*) FROM prod_user_groups WHERE group_name = 'admins'"],
            self.engine.started_queries,
        )

    def test_forget_execution(self) -> None:
        report = self._trigger_search()
        execution_id = self._get_execution_id(report.task_id)
        self.assertFalse(self.tracker.forget_execution(report.task_id))

        self.engine.fail(execution_id, "Syntax error")
        self.tracker.poll(report.task_id)
        self.assertTrue(self.tracker.forget_execution(report.task_id))
        self.assertFalse(self.tracker.forget_execution(report.task_id))

        with self.assertLogs("oc_graphql.tasks.convergence", level="WARNING"):
            self.assertIsNone(
                self.tracker.handle_notification(
                    {"execution_id": execution_id, "status": "SUCCEEDED"}
                )
            )
        self.assertEqual(TaskStatus.FAILED, self.tracker.get(report.task_id).status)


class TransitionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.engine = FakeExecutionEngine()
        self.store = InMemoryTaskStore()
        self.tracker = TaskTracker(
            compile_schema(get_schema_text()),
            self.engine,
            store=self.store,
            config=TaskTrackingConfig(clock=self.clock),
        )
        self.task_id = self.tracker.trigger("countUsers").task_id

    def test_running_to_running_is_a_no_op(self) -> None:
        task = transition(self.store, self.task_id, TaskStatus.RUNNING, self.clock())
        self.assertEqual(TaskStatus.RUNNING, task.status)
        self.assertIsNone(task.finished_at)

    def test_terminal_state_is_written_once(self) -> None:
        task = transition(
            self.store, self.task_id, TaskStatus.SUCCEEDED, self.clock(), result=[{"count": "1"}]
        )
        self.assertEqual(TaskStatus.SUCCEEDED, task.status)
        self.assertEqual([{"count": "1"}], task.result)
        finished_at = task.finished_at

        self.clock.advance(timedelta(minutes=1))
        task = transition(
            self.store, self.task_id, TaskStatus.FAILED, self.clock(), error="Too late"
        )
        self.assertEqual(TaskStatus.SUCCEEDED, task.status)
        self.assertEqual(finished_at, task.finished_at)
        self.assertIsNone(task.error)

    def test_results_only_kept_on_success(self) -> None:
        task = transition(
            self.store,
            self.task_id,
            TaskStatus.CANCELLED,
            self.clock(),
            result=[{"count": "1"}],
            error="Cancelled by user",
        )
        self.assertIsNone(task.result)
        self.assertEqual("Cancelled by user", task.error)
