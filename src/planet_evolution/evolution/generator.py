"""Variant generation: a fixed-size population of immutable mutants per generation."""

from __future__ import annotations

import logging
from pathlib import Path

from planet_evolution.errors import MalformedArtifactOrSummary, MissingBaseArtifact
from planet_evolution.evolution.aggregate import Aggregator
from planet_evolution.interfaces import ModelProvider
from planet_evolution.layout import ArtifactLayout, variant_index
from planet_evolution.lineage import Lineage
from planet_evolution.utils.atomic_io import atomic_write_bytes

logger = logging.getLogger(__name__)


class VariantGenerator:
    """Ensures ``spectrum_steps`` variants exist for a lineage and generation.

    Variant 0 is the control: the reigning champion's bytes when a champion
    exists, otherwise an unperturbed clone of the base. Variant ``i >= 1`` is
    the base perturbed with seed ``i``. Existing variants are never touched.
    """

    def __init__(
        self,
        layout: ArtifactLayout,
        provider: ModelProvider,
        aggregator: Aggregator,
        *,
        spectrum_steps: int,
        max_stddev: float,
    ) -> None:
        self.layout = layout
        self.provider = provider
        self.aggregator = aggregator
        self.spectrum_steps = spectrum_steps
        self.max_stddev = max_stddev

    def resolve_base_path(self, lineage: Lineage, generation: int) -> Path:
        if generation == 0:
            return self.layout.base_model(lineage, 0)
        previous = generation - 1
        ranked_path = self.layout.ranked(lineage, previous)
        try:
            ranked = self.aggregator.load_ranked(lineage, previous)
        except FileNotFoundError as exc:
            raise MissingBaseArtifact(lineage.key, generation, ranked_path, "previous generation was never ranked") from exc
        except MalformedArtifactOrSummary as exc:
            raise MissingBaseArtifact(lineage.key, generation, ranked_path, exc.reason) from exc
        if not ranked:
            raise MissingBaseArtifact(lineage.key, generation, ranked_path, "ranked list is empty")
        return self.layout.variant(lineage, previous, ranked[0].variant)

    def existing_variants(self, lineage: Lineage, generation: int) -> set[int]:
        mutated = self.layout.mutated_dir(lineage, generation)
        if not mutated.is_dir():
            return set()
        found = {variant_index(path.name) for path in mutated.iterdir() if path.is_file()}
        return {index for index in found if index is not None and index < self.spectrum_steps}

    def ensure_variants(self, lineage: Lineage, generation: int) -> list[Path]:
        paths = [self.layout.variant(lineage, generation, i) for i in range(self.spectrum_steps)]
        missing = sorted(set(range(self.spectrum_steps)) - self.existing_variants(lineage, generation))
        if not missing:
            logger.info("[%s gen %d] all %d variants already exist", lineage, generation, self.spectrum_steps)
            return paths

        base_path = self.resolve_base_path(lineage, generation)
        try:
            base = self.provider.load(base_path)
        except FileNotFoundError as exc:
            raise MissingBaseArtifact(lineage.key, generation, base_path, "file not found") from exc
        except MalformedArtifactOrSummary as exc:
            raise MissingBaseArtifact(lineage.key, generation, base_path, exc.reason) from exc

        for index in missing:
            target = paths[index]
            if index == 0:
                champion = self.layout.champion(lineage)
                if champion.exists():
                    atomic_write_bytes(target, champion.read_bytes())
                    logger.info("[%s gen %d] variant_0 seeded from champion %s", lineage, generation, champion)
                else:
                    self.provider.save(self.provider.clone(base), target)
                continue
            mutant = self.provider.perturb(self.provider.clone(base), self.max_stddev, index)
            self.provider.save(mutant, target)
        logger.info(
            "[%s gen %d] wrote %d variant(s) from base %s",
            lineage,
            generation,
            len(missing),
            self.layout.relative(base_path),
        )
        return paths


__all__ = ["VariantGenerator"]
