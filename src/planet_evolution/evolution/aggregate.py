"""Reduce unit results to variant summaries, and summaries to rankings."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from planet_evolution.config import Vec3
from planet_evolution.errors import MalformedArtifactOrSummary
from planet_evolution.evolution.ledger import StageLedger, work_key
from planet_evolution.layout import ArtifactLayout, summary_index
from planet_evolution.lineage import Lineage
from planet_evolution.utils.atomic_io import read_json, write_json_once

logger = logging.getLogger(__name__)

RANK_STAGE = "rank"
LEADERBOARD_STAGE = "leaderboard"


class UnitResult(BaseModel):
    name: str
    planet: int = 0
    initial_position: Vec3
    final_position: Vec3
    goal_position: Vec3
    progress: float


class VariantSummary(BaseModel):
    mean_progress: float
    median_progress: float
    max_progress: float
    min_progress: float
    results: list[UnitResult] = Field(default_factory=list)


class RankedEntry(BaseModel):
    variant: int
    mean_progress: float

    @field_validator("variant", mode="before")
    @classmethod
    def _variant_from_text(cls, value: object) -> object:
        # older ranked lists store the index as a string
        if isinstance(value, str):
            return int(value.strip())
        return value


class LeaderboardEntry(BaseModel):
    num_type: str
    mode: str
    variant: int
    mean_progress: float


def distance(a: Vec3, b: Vec3) -> float:
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))


def progress(initial: Vec3, final: Vec3, goal: Vec3) -> float:
    """Reduction in distance to ``goal``; positive means the unit moved closer."""
    return distance(initial, goal) - distance(final, goal)


def summary_stats(values: Iterable[float]) -> dict[str, float]:
    """Mean, median, min and max; all zero for an empty input."""
    data = sorted(float(v) for v in values)
    if not data:
        return {"mean": 0.0, "median": 0.0, "min": 0.0, "max": 0.0}
    n = len(data)
    mid = n // 2
    median = data[mid] if n % 2 else (data[mid - 1] + data[mid]) / 2.0
    return {"mean": sum(data) / n, "median": median, "min": data[0], "max": data[-1]}


def build_summary(results: Sequence[UnitResult]) -> VariantSummary:
    stats = summary_stats(result.progress for result in results)
    return VariantSummary(
        mean_progress=stats["mean"],
        median_progress=stats["median"],
        max_progress=stats["max"],
        min_progress=stats["min"],
        results=list(results),
    )


def _mean_of(payload: object) -> float:
    if not isinstance(payload, dict):
        raise TypeError("summary is not an object")
    value = payload["mean_progress"]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"mean_progress is {type(value).__name__}, not a number")
    return float(value)


class Aggregator:
    def __init__(self, layout: ArtifactLayout, spectrum_steps: int, ledger: Optional[StageLedger] = None) -> None:
        self.layout = layout
        self.spectrum_steps = spectrum_steps
        self.ledger = ledger

    def missing_summaries(self, lineage: Lineage, generation: int) -> list[int]:
        results_dir = self.layout.results_dir(lineage, generation)
        present: set[int] = set()
        if results_dir.is_dir():
            for path in results_dir.iterdir():
                index = summary_index(path.name)
                if index is not None:
                    present.add(index)
        return [i for i in range(self.spectrum_steps) if i not in present]

    def rank_lineage(self, lineage: Lineage, generation: int) -> Optional[list[RankedEntry]]:
        """Write ``total_results/{key}.json`` once every variant is summarised.

        An existing ranked list is returned as-is, even if summaries changed.
        """
        target = self.layout.ranked(lineage, generation)
        if target.exists():
            self._backfill(RANK_STAGE, work_key(lineage.key, generation))
            return self.load_ranked(lineage, generation)
        missing = self.missing_summaries(lineage, generation)
        if missing:
            logger.info("[%s gen %d] not ranking yet, missing summaries for %s", lineage, generation, missing)
            return None
        entries: list[RankedEntry] = []
        for index in range(self.spectrum_steps):
            path = self.layout.summary(lineage, generation, index)
            try:
                mean = _mean_of(read_json(path))
            except (MalformedArtifactOrSummary, KeyError, TypeError) as exc:
                logger.warning("[%s gen %d variant %d] skipping summary %s: %s", lineage, generation, index, path, exc)
                continue
            entries.append(RankedEntry(variant=index, mean_progress=mean))
        if not entries:
            logger.warning("[%s gen %d] no usable summaries, nothing ranked", lineage, generation)
            return None
        ranked = sorted(entries, key=lambda entry: entry.mean_progress, reverse=True)
        write_json_once(target, [entry.model_dump() for entry in ranked])
        if self.ledger is not None:
            self.ledger.mark_complete(RANK_STAGE, work_key(lineage.key, generation))
        logger.info(
            "[%s gen %d] ranked %d variants, best variant_%d mean %.4f",
            lineage,
            generation,
            len(ranked),
            ranked[0].variant,
            ranked[0].mean_progress,
        )
        return ranked

    def load_ranked(self, lineage: Lineage, generation: int) -> list[RankedEntry]:
        """Read a ranked list. ``FileNotFoundError`` propagates when it was never written."""
        path = self.layout.ranked(lineage, generation)
        payload = read_json(path)
        if not isinstance(payload, list):
            raise MalformedArtifactOrSummary(path, "ranked list is not an array")
        try:
            return [RankedEntry.model_validate(item) for item in payload]
        except (ValidationError, ValueError) as exc:
            raise MalformedArtifactOrSummary(path, f"invalid ranked entry: {exc}") from exc

    def write_leaderboard(self, generation: int) -> Optional[list[LeaderboardEntry]]:
        """Top entry of every lineage's ranked list for ``generation``, written once."""
        target = self.layout.leaderboard(generation)
        if target.exists():
            try:
                payload = read_json(target)
                if not isinstance(payload, list):
                    raise MalformedArtifactOrSummary(target, "leaderboard is not an array")
                return [LeaderboardEntry.model_validate(item) for item in payload]
            except (MalformedArtifactOrSummary, ValidationError) as exc:
                logger.warning("[gen %d] unreadable leaderboard %s: %s", generation, target, exc)
                return None
        total_dir = self.layout.total_results_dir(generation)
        if not total_dir.is_dir():
            return None
        board: list[LeaderboardEntry] = []
        for path in sorted(total_dir.glob("*.json")):
            if path == target:
                continue
            try:
                lineage = Lineage.parse(path.stem)
                ranked = self.load_ranked(lineage, generation)
            except (ValueError, MalformedArtifactOrSummary) as exc:
                logger.warning("[gen %d] leaderboard skips %s: %s", generation, path, exc)
                continue
            if not ranked:
                continue
            top = ranked[0]
            board.append(
                LeaderboardEntry(
                    num_type=lineage.numeric_type.value,
                    mode=lineage.mode.value,
                    variant=top.variant,
                    mean_progress=top.mean_progress,
                )
            )
        if not board:
            return None
        board = sorted(board, key=lambda entry: entry.mean_progress, reverse=True)
        write_json_once(target, [entry.model_dump() for entry in board])
        if self.ledger is not None:
            self.ledger.mark_complete(LEADERBOARD_STAGE, str(generation))
        return board

    def _backfill(self, stage: str, key: str) -> None:
        if self.ledger is not None and not self.ledger.is_complete(stage, key):
            self.ledger.mark_complete(stage, key, detail="backfilled")


__all__ = [
    "Aggregator",
    "LeaderboardEntry",
    "RankedEntry",
    "UnitResult",
    "VariantSummary",
    "build_summary",
    "distance",
    "progress",
    "summary_stats",
]
