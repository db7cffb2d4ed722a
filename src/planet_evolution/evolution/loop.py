"""Generation loop: drives every lineage through generate, evaluate, rank, promote."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from planet_evolution.context import RunContext
from planet_evolution.environment.dispatch import DispatchController
from planet_evolution.errors import PlanetEvolutionError
from planet_evolution.evolution.aggregate import Aggregator, LeaderboardEntry, RankedEntry
from planet_evolution.evolution.champion import ChampionPromoter, PromotionDecision
from planet_evolution.evolution.generator import VariantGenerator
from planet_evolution.lineage import Lineage
from planet_evolution.metrics.status import LINEAGE_LEVEL, Stage

logger = logging.getLogger(__name__)


@dataclass
class GenerationReport:
    generation: int
    ranked: dict[str, list[RankedEntry]] = field(default_factory=dict)
    promotions: dict[str, PromotionDecision] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    evaluated: int = 0
    skipped: int = 0
    leaderboard: Optional[list[LeaderboardEntry]] = None


class GenerationLoop:
    """Sequential over generations, lineages and variants.

    Every stage checks the artifact tree before doing work, so a killed run
    resumes at the first variant without a summary.
    """

    def __init__(self, context: RunContext) -> None:
        self.context = context
        config = context.config
        self.aggregator = Aggregator(context.layout, config.spectrum_steps, context.ledger)
        self.generator = VariantGenerator(
            context.layout,
            context.provider,
            self.aggregator,
            spectrum_steps=config.spectrum_steps,
            max_stddev=config.spectrum_max_stddev,
        )
        self.dispatcher = DispatchController(
            config,
            context.layout,
            context.provider,
            context.runtime,
            context.topology,
            ledger=context.ledger,
            owner=context.owner,
        )
        self.promoter = ChampionPromoter(context.layout, self.aggregator, context.ledger)

    def _emit(self, stage: Stage, generation: int, lineage: Lineage, variant: int = LINEAGE_LEVEL, message: str = "") -> None:
        self.context.status.emit(
            stage,
            generation,
            num_type=lineage.numeric_type.value,
            mode=lineage.mode.value,
            variant=variant,
            message=message,
        )

    async def run(self) -> list[GenerationReport]:
        reports = []
        for generation in range(self.context.config.episodes):
            reports.append(await self.run_generation(generation))
        logger.info("Finished %d generation(s) for %r", len(reports), self.context.config.name)
        return reports

    async def run_generation(self, generation: int) -> GenerationReport:
        report = GenerationReport(generation)
        for lineage in self.context.lineages:
            await self.run_lineage(lineage, generation, report)
        unranked = [
            lineage.key
            for lineage in self.context.lineages
            if not self.context.layout.ranked(lineage, generation).exists()
        ]
        if unranked:
            logger.info("[gen %d] leaderboard waits for %s", generation, ", ".join(unranked))
            return report
        report.leaderboard = self.aggregator.write_leaderboard(generation)
        if report.leaderboard:
            best = report.leaderboard[0]
            self.context.status.emit(
                Stage.LEADERBOARD,
                generation,
                message=f"best {best.num_type}_{best.mode} variant_{best.variant} {best.mean_progress:.4f}",
            )
        return report

    async def run_lineage(self, lineage: Lineage, generation: int, report: GenerationReport) -> None:
        steps = self.context.config.spectrum_steps
        self._emit(Stage.GENERATING, generation, lineage)
        try:
            self.generator.ensure_variants(lineage, generation)
        except PlanetEvolutionError as exc:
            logger.error("[%s gen %d] variant generation failed: %s", lineage, generation, exc)
            report.failed[lineage.key] = str(exc)
            self._emit(Stage.FAILED, generation, lineage, message=str(exc))
            return
        self._emit(Stage.GENERATED, generation, lineage, message=f"{steps} variants")

        for index in range(steps):
            if self.context.layout.summary(lineage, generation, index).exists():
                report.skipped += 1
                self._emit(Stage.SKIPPED, generation, lineage, index, "summary exists")
                continue

            def on_stage(stage: Stage, message: str, index: int = index) -> None:
                self._emit(stage, generation, lineage, index, message)

            summary = await self.dispatcher.evaluate(lineage, generation, index, on_stage=on_stage)
            if summary is not None:
                report.evaluated += 1

        self._emit(Stage.AGGREGATE, generation, lineage)
        try:
            ranked = self.aggregator.rank_lineage(lineage, generation)
            if ranked is None:
                reason = "generation incomplete, will resume on next run"
                report.failed[lineage.key] = reason
                self._emit(Stage.FAILED, generation, lineage, message=reason)
                return
            report.ranked[lineage.key] = ranked
            self._emit(Stage.CHAMPION_CHECK, generation, lineage)
            decision = self.promoter.check(lineage, generation)
        except PlanetEvolutionError as exc:
            logger.error("[%s gen %d] aggregation failed: %s", lineage, generation, exc)
            report.failed[lineage.key] = str(exc)
            self._emit(Stage.FAILED, generation, lineage, message=str(exc))
            return
        if decision is not None:
            report.promotions[lineage.key] = decision


__all__ = ["GenerationLoop", "GenerationReport"]
