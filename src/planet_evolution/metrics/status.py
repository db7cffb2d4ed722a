"""Status events emitted by the generation loop."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Deque, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from planet_evolution.metrics.persistence import StatusSink

logger = logging.getLogger(__name__)

LINEAGE_LEVEL = -1


class Stage(str, Enum):
    GENERATING = "Generating"
    GENERATED = "Generated"
    SKIPPED = "Skipped"
    SPAWNING_AGENTS = "SpawningAgents"
    RUNNING = "Running"
    FINISHED = "Finished"
    CLEANED = "Cleaned"
    AGGREGATE = "Aggregate"
    CHAMPION_CHECK = "ChampionCheck"
    LEADERBOARD = "Leaderboard"
    FAILED = "Failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusEvent(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    generation: int
    num_type: str = ""
    mode: str = ""
    variant: int = LINEAGE_LEVEL
    stage: Stage
    message: str = ""


class StatusLog:
    """Append-ordered ring buffer of status events.

    Only the newest ``limit`` events stay in memory; when a sink is attached
    every event is also appended to disk before it can be evicted.
    """

    def __init__(self, limit: int = 1024, sink: Optional["StatusSink"] = None) -> None:
        self._events: Deque[StatusEvent] = deque(maxlen=limit)
        self.sink = sink
        self.total = 0

    def emit(
        self,
        stage: Stage,
        generation: int,
        *,
        num_type: str = "",
        mode: str = "",
        variant: int = LINEAGE_LEVEL,
        message: str = "",
    ) -> StatusEvent:
        event = StatusEvent(
            generation=generation,
            num_type=num_type,
            mode=mode,
            variant=variant,
            stage=stage,
            message=message,
        )
        self._events.append(event)
        self.total += 1
        logger.info(
            "[gen %d] %s_%s variant %d: %s %s",
            generation,
            num_type,
            mode,
            variant,
            stage.value,
            message,
        )
        if self.sink is not None:
            try:
                self.sink.log_status(event)
            except OSError as exc:
                logger.warning("Status sink %s failed: %s", self.sink.path, exc)
        return event

    def recent(self, count: int | None = None) -> list[StatusEvent]:
        events = list(self._events)
        return events if count is None else events[-count:]

    def __len__(self) -> int:
        return len(self._events)


__all__ = ["LINEAGE_LEVEL", "Stage", "StatusEvent", "StatusLog"]
