# Copyright 2024-present Kensho Technologies, LLC.
from .config import TaskTrackingConfig  # noqa
from .convergence import TaskTracker, transition  # noqa
from .engine import ExecutionEngine  # noqa
from .notifications import PushNotification, parse_notification, parse_notifications  # noqa
from .result_shaping import make_json_safe, shape_rows  # noqa
from .sqlalchemy_store import SQLAlchemyTaskStore  # noqa
from .store import InMemoryTaskStore, TaskStore  # noqa
from .typedefs import (  # noqa
    TASK_TIMEOUT_MARKER,
    ExecutionStatusReport,
    Task,
    TaskStatus,
    TaskStatusReport,
)
