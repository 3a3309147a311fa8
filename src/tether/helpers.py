"""Shared helper functions for the bridge and CLI."""

from __future__ import annotations

import logging

from tether.constants import NotificationSink
from tether.notifications import ErrorNotification


def report_error(
    sink: NotificationSink,
    conversation_id: str,
    error_msg: str,
    logger: logging.Logger | None = None,
) -> None:
    """Log and send an error notification in one call."""
    if logger:
        logger.error("%s: %s", conversation_id, error_msg)
    sink(ErrorNotification(conversation_id=conversation_id, error=error_msg))
