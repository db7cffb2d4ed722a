"""Champion promotion: one durable best artifact per lineage."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ValidationError

from planet_evolution.errors import MalformedArtifactOrSummary
from planet_evolution.evolution.aggregate import Aggregator
from planet_evolution.evolution.ledger import StageLedger, work_key
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage
from planet_evolution.utils.atomic_io import atomic_write_bytes, atomic_write_json, read_json

logger = logging.getLogger(__name__)

CHAMPION_STAGE = "champion"


def artifact_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ChampionProvenance(BaseModel):
    artifact_hash: str
    generation: int
    variant: int
    score: float


@dataclass
class PromotionDecision:
    promoted: bool
    candidate_variant: int
    candidate_score: float
    champion_score: Optional[float]
    reason: str


class ChampionPromoter:
    """Sole writer of ``models/champion/``.

    The incumbent's score comes from its provenance file when the recorded
    hash matches the champion bytes. Without usable provenance the ranked
    lists are scanned backward from the current generation for a variant
    whose bytes equal the champion's.
    """

    def __init__(self, layout: ArtifactLayout, aggregator: Aggregator, ledger: Optional[StageLedger] = None) -> None:
        self.layout = layout
        self.aggregator = aggregator
        self.ledger = ledger

    def load_provenance(self, lineage: Lineage) -> Optional[ChampionProvenance]:
        path = self.layout.champion_provenance(lineage)
        try:
            return ChampionProvenance.model_validate(read_json(path))
        except FileNotFoundError:
            return None
        except (MalformedArtifactOrSummary, ValidationError) as exc:
            logger.warning("[%s] ignoring unreadable champion provenance %s: %s", lineage, path, exc)
            return None

    def find_by_bytes(self, lineage: Lineage, champion: bytes, generation: int) -> Optional[ChampionProvenance]:
        """Legacy lookup: first ranked variant, newest generation first, with identical bytes."""
        digest = artifact_hash(champion)
        for gen in range(generation, -1, -1):
            try:
                ranked = self.aggregator.load_ranked(lineage, gen)
            except FileNotFoundError:
                continue
            except MalformedArtifactOrSummary as exc:
                logger.warning("[%s gen %d] skipping ranked list during champion scan: %s", lineage, gen, exc)
                continue
            for entry in ranked:
                path = self.layout.variant(lineage, gen, entry.variant)
                try:
                    data = path.read_bytes()
                except FileNotFoundError:
                    continue
                if data == champion:
                    return ChampionProvenance(
                        artifact_hash=digest,
                        generation=gen,
                        variant=entry.variant,
                        score=entry.mean_progress,
                    )
        return None

    def champion_provenance(self, lineage: Lineage, generation: int) -> Optional[ChampionProvenance]:
        try:
            champion = self.layout.champion(lineage).read_bytes()
        except FileNotFoundError:
            return None
        provenance = self.load_provenance(lineage)
        if provenance is not None and provenance.artifact_hash == artifact_hash(champion):
            return provenance
        found = self.find_by_bytes(lineage, champion, generation)
        if found is not None:
            atomic_write_json(self.layout.champion_provenance(lineage), found.model_dump())
        return found

    def check(self, lineage: Lineage, generation: int) -> Optional[PromotionDecision]:
        """Promote rank 0 of ``generation`` iff it strictly beats the incumbent."""
        try:
            ranked = self.aggregator.load_ranked(lineage, generation)
        except (FileNotFoundError, MalformedArtifactOrSummary) as exc:
            logger.warning("[%s gen %d] champion check skipped, no ranked list: %s", lineage, generation, exc)
            return None
        if not ranked:
            logger.warning("[%s gen %d] champion check skipped, ranked list is empty", lineage, generation)
            return None
        top = ranked[0]
        candidate_path = self.layout.variant(lineage, generation, top.variant)
        try:
            candidate = candidate_path.read_bytes()
        except FileNotFoundError:
            logger.error("[%s gen %d] top variant %s is missing", lineage, generation, candidate_path)
            return None

        incumbent = self.champion_provenance(lineage, generation)
        champion_exists = self.layout.champion(lineage).exists()
        if incumbent is not None and top.mean_progress <= incumbent.score:
            decision = PromotionDecision(
                promoted=False,
                candidate_variant=top.variant,
                candidate_score=top.mean_progress,
                champion_score=incumbent.score,
                reason=f"champion from gen {incumbent.generation} holds ({incumbent.score:.4f} >= {top.mean_progress:.4f})",
            )
        else:
            if not champion_exists:
                reason = "no champion yet"
            elif incumbent is None:
                reason = "champion provenance unknown"
            else:
                reason = f"beats {incumbent.score:.4f}"
            atomic_write_bytes(self.layout.champion(lineage), candidate)
            atomic_write_json(
                self.layout.champion_provenance(lineage),
                ChampionProvenance(
                    artifact_hash=artifact_hash(candidate),
                    generation=generation,
                    variant=top.variant,
                    score=top.mean_progress,
                ).model_dump(),
            )
            decision = PromotionDecision(
                promoted=True,
                candidate_variant=top.variant,
                candidate_score=top.mean_progress,
                champion_score=None if incumbent is None else incumbent.score,
                reason=reason,
            )
        if self.ledger is not None:
            self.ledger.mark_complete(CHAMPION_STAGE, work_key(lineage.key, generation), detail=decision.reason)
        logger.info(
            "[%s gen %d] champion %s: variant_%d score %.4f (%s)",
            lineage,
            generation,
            "promoted" if decision.promoted else "kept",
            top.variant,
            top.mean_progress,
            decision.reason,
        )
        return decision


__all__ = ["CHAMPION_STAGE", "ChampionPromoter", "ChampionProvenance", "PromotionDecision", "artifact_hash"]
