"""Progress events emitted while a dataset is routed and processed.

The dispatcher and executors never write progress output themselves. They
hand a SpeedEvent to an observer, which is any callable taking one event.
The default observer forwards events to the ``ben_speed`` logger.

Example:
    events = []
    speed(df, pipeline, observer=events.append)
    [e.stage for e in events]  # ['start', 'input', 'verdict', ...]
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("ben_speed")


@dataclass(frozen=True)
class SpeedEvent:
    """One step of a dispatcher run.

    Attributes:
        stage: Short machine-readable name ("start", "route", "chunk_plan", ...)
        message: Human-readable description
        details: Extra values for the stage (sizes, counts, route names)
        level: logging level the default observer uses
    """

    stage: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    level: int = logging.INFO


Observer = Callable[[SpeedEvent], None]


class LoggingObserver:
    """Observer that writes events to a stdlib logger."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def __call__(self, event: SpeedEvent) -> None:
        if event.details:
            self.log.log(event.level, "%s %s", event.message, event.details)
        else:
            self.log.log(event.level, "%s", event.message)


def emit(
    observer: Observer | None,
    stage: str,
    message: str,
    level: int = logging.INFO,
    **details: Any,
) -> None:
    """Build an event and hand it to ``observer`` (default: LoggingObserver)."""
    (observer or LoggingObserver())(SpeedEvent(stage, message, details, level))
