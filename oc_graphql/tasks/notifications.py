# Copyright 2024-present Kensho Technologies, LLC.
"""Parsing of inbound notifications reporting the state of query executions.

Two payload shapes are accepted:
- a flat mapping: {"execution_id": ..., "status": ..., "error": ..., "time": ...}, where
  only "execution_id" and "status" are required;
- an event of the "Athena Query State Change" kind delivered through an event bus:
  {"detail-type": ..., "time": ..., "detail": {"queryExecutionId": ...,
  "currentState": ..., "stateChangeReason": ...}}.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Iterable, List, Mapping, Optional

# C-based module confuses pylint, which is why we disable the check below.
from ciso8601 import parse_datetime  # pylint: disable=no-name-in-module

from ..exceptions import NotificationParsingError
from .typedefs import TaskStatus, parse_execution_state


logger = logging.getLogger(__name__)

QUERY_STATE_CHANGE_DETAIL_TYPE = "Athena Query State Change"


@dataclass(frozen=True)
class PushNotification:
    """An execution engine's report that one of its executions changed state."""

    execution_id: str
    status: TaskStatus
    error: Optional[str] = None

    # Time of the state change as reported by the sender, as naive UTC.
    occurred_at: Optional[datetime] = None


def _parse_time(raw_time: Any) -> Optional[datetime]:
    if raw_time is None:
        return None
    if not isinstance(raw_time, str):
        raise NotificationParsingError(
            "Expected the notification time to be a string, got {!r}.".format(raw_time)
        )
    try:
        parsed = parse_datetime(raw_time)
    except ValueError as e:
        raise NotificationParsingError(
            "Invalid notification time {!r}: {}".format(raw_time, e)
        ) from e

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _get_required_string(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise NotificationParsingError(
            "Expected notification field {} to be a non-empty string, got {!r}.".format(
                key, value
            )
        )
    return value


def _make_notification(
    execution_id: str, raw_state: str, error: Any, raw_time: Any
) -> PushNotification:
    try:
        status = parse_execution_state(raw_state)
    except ValueError as e:
        raise NotificationParsingError(
            "Notification for execution {}: {}".format(execution_id, e)
        ) from e

    return PushNotification(
        execution_id=execution_id,
        status=status,
        error=str(error) if error is not None else None,
        occurred_at=_parse_time(raw_time),
    )


######
# Public API
######


def parse_notification(payload: Mapping[str, Any]) -> PushNotification:
    """Parse one inbound notification payload.

    Args:
        payload: flat notification mapping, or query state change event

    Returns:
        PushNotification describing the reported state

    Raises:
        NotificationParsingError: if the payload has neither of the accepted shapes,
                                  or reports an unknown execution state
    """
    if not isinstance(payload, Mapping):
        raise NotificationParsingError(
            "Expected the notification to be a mapping, got {!r}.".format(payload)
        )

    if "detail" in payload:
        detail_type = payload.get("detail-type", QUERY_STATE_CHANGE_DETAIL_TYPE)
        if detail_type != QUERY_STATE_CHANGE_DETAIL_TYPE:
            raise NotificationParsingError(
                "Unexpected event detail type {!r}, expected {!r}.".format(
                    detail_type, QUERY_STATE_CHANGE_DETAIL_TYPE
                )
            )
        detail = payload["detail"]
        if not isinstance(detail, Mapping):
            raise NotificationParsingError(
                "Expected the event detail to be a mapping, got {!r}.".format(detail)
            )
        return _make_notification(
            _get_required_string(detail, "queryExecutionId"),
            _get_required_string(detail, "currentState"),
            detail.get("stateChangeReason"),
            payload.get("time"),
        )

    return _make_notification(
        _get_required_string(payload, "execution_id"),
        _get_required_string(payload, "status"),
        payload.get("error"),
        payload.get("time"),
    )


def parse_notifications(payloads: Iterable[Mapping[str, Any]]) -> List[PushNotification]:
    """Parse a batch of notifications, logging and skipping the malformed ones."""
    notifications = []
    for index, payload in enumerate(payloads):
        try:
            notifications.append(parse_notification(payload))
        except NotificationParsingError as e:
            logger.warning(
                "Skipping malformed notification at batch position %(index)d: %(error)s",
                {"index": index, "error": e},
            )
    return notifications
