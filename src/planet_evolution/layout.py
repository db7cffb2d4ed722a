"""Paths of every artifact in the ``models/`` tree."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from planet_evolution.lineage import Lineage

_VARIANT_RE = re.compile(r"^variant_(\d+)\.json$")
_SUMMARY_RE = re.compile(r"^variant_(\d+)_summary\.json$")


@dataclass(frozen=True)
class ArtifactLayout:
    """Resolves artifact paths under ``root`` (normally ``models/``).

    ``{gen}/{type}_{mode}.json``                                  base model
    ``{gen}/mutated_{type}_{mode}/variant_{i}.json``              variants
    ``{gen}/mutated_{type}_{mode}/agent_names/variant_{i}.json``  unit names
    ``{gen}/mutated_{type}_{mode}/results/variant_{i}_summary.json``
    ``{gen}/total_results/{type}_{mode}.json``                    ranked list
    ``{gen}/total_results/full_results.json``                     leaderboard
    ``champion/{type}_{mode}.json``                               champion
    """

    root: Path

    def generation_dir(self, generation: int) -> Path:
        return self.root / str(generation)

    def base_model(self, lineage: Lineage, generation: int = 0) -> Path:
        return self.generation_dir(generation) / f"{lineage.key}.json"

    def mutated_dir(self, lineage: Lineage, generation: int) -> Path:
        return self.generation_dir(generation) / f"mutated_{lineage.key}"

    def variant(self, lineage: Lineage, generation: int, index: int) -> Path:
        return self.mutated_dir(lineage, generation) / f"variant_{index}.json"

    def agent_names(self, lineage: Lineage, generation: int, index: int) -> Path:
        return self.mutated_dir(lineage, generation) / "agent_names" / f"variant_{index}.json"

    def results_dir(self, lineage: Lineage, generation: int) -> Path:
        return self.mutated_dir(lineage, generation) / "results"

    def summary(self, lineage: Lineage, generation: int, index: int) -> Path:
        return self.results_dir(lineage, generation) / f"variant_{index}_summary.json"

    def total_results_dir(self, generation: int) -> Path:
        return self.generation_dir(generation) / "total_results"

    def ranked(self, lineage: Lineage, generation: int) -> Path:
        return self.total_results_dir(generation) / f"{lineage.key}.json"

    def leaderboard(self, generation: int) -> Path:
        return self.total_results_dir(generation) / "full_results.json"

    def champion(self, lineage: Lineage) -> Path:
        return self.root / "champion" / f"{lineage.key}.json"

    def champion_provenance(self, lineage: Lineage) -> Path:
        return self.root / "champion" / f"{lineage.key}.provenance.json"

    def relative(self, path: Path) -> str:
        """POSIX path relative to the root, stable across working directories."""
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()


def variant_index(filename: str) -> int | None:
    match = _VARIANT_RE.match(filename)
    return int(match.group(1)) if match else None


def summary_index(filename: str) -> int | None:
    match = _SUMMARY_RE.match(filename)
    return int(match.group(1)) if match else None


__all__ = ["ArtifactLayout", "summary_index", "variant_index"]
