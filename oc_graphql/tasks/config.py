# Copyright 2024-present Kensho Technologies, LLC.
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional


DEFAULT_MAX_TASK_AGE = timedelta(hours=1)


def utc_now() -> datetime:
    """Return the current UTC time as a naive datetime, the form in which task times are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class TaskTrackingConfig:
    """Settings of task tracking."""

    # Tasks RUNNING for longer than this are failed with TASK_TIMEOUT_MARKER.
    # None disables expiry altogether.
    max_task_age: Optional[timedelta] = DEFAULT_MAX_TASK_AGE

    # Prefix of the physical names of join tables.
    table_prefix: str = ""

    clock: Callable[[], datetime] = field(default=utc_now, compare=False)

    def __post_init__(self) -> None:
        """Validate fields."""
        if self.max_task_age is not None and self.max_task_age <= timedelta(0):
            raise ValueError(
                "Expected max_task_age to be a positive duration or None, got {}.".format(
                    self.max_task_age
                )
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "TaskTrackingConfig":
        """Build the config from a plain mapping of settings, such as environment variables.

        Recognized keys are "max_task_age_seconds" (a number, or an empty value to disable
        expiry) and "table_prefix". Missing keys keep their default values.

        Raises:
            ValueError: if the mapping contains unrecognized keys or malformed values
        """
        unexpected_keys = set(mapping) - {"max_task_age_seconds", "table_prefix"}
        if unexpected_keys:
            raise ValueError(
                "Unexpected task tracking settings: {}".format(sorted(unexpected_keys))
            )

        kwargs = {}
        if "max_task_age_seconds" in mapping:
            raw_age = mapping["max_task_age_seconds"]
            if raw_age is None or raw_age == "":
                kwargs["max_task_age"] = None
            else:
                kwargs["max_task_age"] = timedelta(seconds=float(raw_age))
        if "table_prefix" in mapping:
            kwargs["table_prefix"] = str(mapping["table_prefix"])

        return cls(**kwargs)
