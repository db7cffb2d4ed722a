"""Dispatch and evaluation of one variant in the remote world."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from planet_evolution.config import ExperimentConfig, Vec3
from planet_evolution.errors import (
    MalformedArtifactOrSummary,
    PartialSpawnFailure,
    PlanetEvolutionError,
    RuntimeCommandError,
)
from planet_evolution.evolution.aggregate import UnitResult, VariantSummary, build_summary, progress
from planet_evolution.evolution.ledger import StageLedger, work_key
from planet_evolution.interfaces import AgentRuntime, ModelProvider, RuntimeSession, Topology, UnitSpec
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage
from planet_evolution.metrics.status import Stage
from planet_evolution.utils.atomic_io import read_json, write_json_once
from planet_evolution.utils.ids import lease_owner

logger = logging.getLogger(__name__)

EVALUATE_STAGE = "evaluate"

StageCallback = Callable[[Stage, str], None]


@dataclass
class Placement:
    name: str
    planet: int
    position: Vec3
    goal: Vec3


def _add(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] + b[0], a[1] + b[1], a[2] + b[2])


def _scale(a: Vec3, k: float) -> Vec3:
    return (a[0] * k, a[1] * k, a[2] * k)


class DispatchController:
    """Runs spawn -> unfreeze -> pulse -> collect -> teardown for one variant."""

    def __init__(
        self,
        config: ExperimentConfig,
        layout: ArtifactLayout,
        provider: ModelProvider,
        runtime: AgentRuntime,
        topology: Topology,
        *,
        ledger: Optional[StageLedger] = None,
        owner: Optional[str] = None,
    ) -> None:
        self.config = config
        self.layout = layout
        self.provider = provider
        self.runtime = runtime
        self.topology = topology
        self.ledger = ledger
        self.owner = owner or lease_owner()

    def allocate_names(self, lineage: Lineage, generation: int, index: int) -> list[str]:
        """Unit names for a variant; derived once, then always read back from disk."""
        path = self.layout.agent_names(lineage, generation, index)
        if path.exists():
            names = read_json(path)
            if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
                raise MalformedArtifactOrSummary(path, "agent names must be a list of strings")
            if len(names) != self.config.units_per_variant:
                logger.warning(
                    "[%s gen %d variant %d] %s holds %d names, config expects %d",
                    lineage,
                    generation,
                    index,
                    path,
                    len(names),
                    self.config.units_per_variant,
                )
            return names
        artifact_path = self.layout.relative(self.layout.variant(lineage, generation, index))
        names = [
            self.topology.generate_unit_id(artifact_path, self.config.world.unit_namespace, generation, sequence)
            for sequence in range(self.config.units_per_variant)
        ]
        write_json_once(path, names)
        return names

    def placements(self, names: list[str]) -> list[Placement]:
        world = self.config.world
        per_planet = self.config.evaluation_spawns_per_planet
        placed: list[Placement] = []
        for planet, vector in enumerate(self.config.planet_vectors()):
            center = _scale(vector, world.planet_spacing)
            goal = _add(center, world.goal_offset)
            offsets = self.topology.sphere_points(per_planet, world.spawn_radius, center)
            for slot, position in enumerate(offsets):
                sequence = planet * per_planet + slot
                if sequence >= len(names):
                    break
                placed.append(Placement(names[sequence], planet, position, goal))
        return placed

    async def evaluate(
        self,
        lineage: Lineage,
        generation: int,
        index: int,
        on_stage: Optional[StageCallback] = None,
    ) -> Optional[VariantSummary]:
        """Evaluate one variant. Returns ``None`` when nothing was written."""
        key = work_key(lineage.key, generation, index)
        if self.layout.summary(lineage, generation, index).exists():
            if self.ledger is not None and not self.ledger.is_complete(EVALUATE_STAGE, key):
                self.ledger.mark_complete(EVALUATE_STAGE, key, detail="backfilled")
            return None
        if self.ledger is not None:
            # the summary file decides; a completion without it is stale
            if self.ledger.is_complete(EVALUATE_STAGE, key):
                logger.warning(
                    "[%s gen %d variant %d] summary missing but ledger marks it done, re-evaluating",
                    lineage,
                    generation,
                    index,
                )
                self.ledger.discard(EVALUATE_STAGE, key)
            if not self.ledger.claim(EVALUATE_STAGE, key, self.owner):
                logger.warning("[%s gen %d variant %d] leased by another run, skipping", lineage, generation, index)
                return None
        try:
            return await self._evaluate(lineage, generation, index, on_stage or (lambda stage, message: None))
        except (PlanetEvolutionError, OSError) as exc:
            logger.error("[%s gen %d variant %d] evaluation aborted: %s", lineage, generation, index, exc)
            return None
        finally:
            if self.ledger is not None:
                self.ledger.release(EVALUATE_STAGE, key, self.owner)

    async def _evaluate(
        self,
        lineage: Lineage,
        generation: int,
        index: int,
        on_stage: StageCallback,
    ) -> Optional[VariantSummary]:
        names = self.allocate_names(lineage, generation, index)
        artifact = self.provider.load(self.layout.variant(lineage, generation, index))
        placed = self.placements(names)
        clamp = (-self.config.world.clamp, self.config.world.clamp)
        units = [
            UnitSpec(p.name, artifact, p.position, clamp, unit_type=self.config.world.unit_type) for p in placed
        ]

        session = self.runtime.open_session(lineage.key)
        on_stage(Stage.SPAWNING_AGENTS, f"{len(units)} units")
        try:
            spawned = await self._spawn_all(session, units)
            if not spawned:
                logger.error("[%s gen %d variant %d] no unit spawned", lineage, generation, index)
                return None
            await self.runtime.unfreeze_all(session)
            on_stage(Stage.RUNNING, f"{len(spawned)} units for {self.config.evaluation.duration_seconds:g}s")
            await self.runtime.pulse(
                session,
                self.config.evaluation.tick_rate,
                self.config.evaluation.duration_seconds,
            )
            results = await self._collect(session, [p for p in placed if p.name in spawned])
            if not results:
                logger.error("[%s gen %d variant %d] no unit reported a position", lineage, generation, index)
                return None
            summary = build_summary(results)
            summary_path = self.layout.summary(lineage, generation, index)
            write_json_once(summary_path, summary.model_dump(mode="json"))
            if self.ledger is not None:
                self.ledger.mark_complete(EVALUATE_STAGE, work_key(lineage.key, generation, index))
            on_stage(Stage.FINISHED, f"mean {summary.mean_progress:.4f} over {len(results)} units")
            return summary
        finally:
            try:
                await self.runtime.destroy_all(session)
            except PlanetEvolutionError as exc:
                logger.warning("[%s gen %d variant %d] teardown failed: %s", lineage, generation, index, exc)
            else:
                on_stage(Stage.CLEANED, "")

    async def _spawn_all(self, session: RuntimeSession, units: list[UnitSpec]) -> set[str]:
        async def _spawn(unit: UnitSpec) -> Optional[str]:
            try:
                await self.runtime.spawn(session, unit)
            except PlanetEvolutionError as exc:
                logger.warning("%s", PartialSpawnFailure(unit.name, str(exc)))
                if isinstance(exc, RuntimeCommandError):
                    await self._despawn_quietly(session, unit.name)
                return None
            return unit.name

        outcomes = await asyncio.gather(*(_spawn(unit) for unit in units))
        return {name for name in outcomes if name is not None}

    async def _despawn_quietly(self, session: RuntimeSession, name: str) -> None:
        try:
            await self.runtime.despawn(session, name)
        except PlanetEvolutionError as exc:
            logger.debug("Despawn of %s after failed spawn: %s", name, exc)

    async def _collect(self, session: RuntimeSession, placed: list[Placement]) -> list[UnitResult]:
        results: list[UnitResult] = []
        for placement in placed:
            try:
                final = await self.runtime.refresh_position(session, placement.name)
            except PlanetEvolutionError as exc:
                logger.warning("Dropping %s from results: %s", placement.name, exc)
                continue
            results.append(
                UnitResult(
                    name=placement.name,
                    planet=placement.planet,
                    initial_position=placement.position,
                    final_position=final,
                    goal_position=placement.goal,
                    progress=progress(placement.position, final, placement.goal),
                )
            )
        return results


__all__ = ["DispatchController", "EVALUATE_STAGE", "Placement"]
