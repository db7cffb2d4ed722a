from __future__ import annotations

import json
from pathlib import Path

from planet_evolution.evolution.aggregate import Aggregator
from planet_evolution.evolution.champion import ChampionPromoter, artifact_hash
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage, Mode, NumericType

LINEAGE = Lineage(NumericType.FLOAT64, Mode.DYNAMIC_REPLAY)


def _promoter(tmp_path: Path) -> ChampionPromoter:
    layout = ArtifactLayout(tmp_path / "models")
    return ChampionPromoter(layout, Aggregator(layout, 3))


def _generation(promoter: ChampionPromoter, gen: int, scores: list[float], blobs: list[bytes] | None = None) -> None:
    layout = promoter.layout
    for index in range(len(scores)):
        path = layout.variant(LINEAGE, gen, index)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(blobs[index] if blobs else f"gen{gen}-variant{index}".encode())
    ranked = sorted(
        ({"variant": i, "mean_progress": s} for i, s in enumerate(scores)),
        key=lambda entry: entry["mean_progress"],
        reverse=True,
    )
    path = layout.ranked(LINEAGE, gen)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(ranked))


def _champion_score(promoter: ChampionPromoter, gen: int) -> float:
    provenance = promoter.champion_provenance(LINEAGE, gen)
    assert provenance is not None
    return provenance.score


def test_first_check_promotes_unconditionally(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    _generation(promoter, 0, [-3.0, -1.0, -2.0])
    decision = promoter.check(LINEAGE, 0)
    assert decision.promoted and decision.candidate_variant == 1
    assert promoter.layout.champion(LINEAGE).read_bytes() == b"gen0-variant1"
    provenance = json.loads(promoter.layout.champion_provenance(LINEAGE).read_text())
    assert provenance == {
        "artifact_hash": artifact_hash(b"gen0-variant1"),
        "generation": 0,
        "variant": 1,
        "score": -1.0,
    }


def test_incumbent_kept_on_lower_or_equal_score(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    _generation(promoter, 0, [1.0, 5.0, 2.0])
    promoter.check(LINEAGE, 0)
    _generation(promoter, 1, [5.0, 4.0, 1.0])
    tie = promoter.check(LINEAGE, 1)
    assert not tie.promoted
    assert tie.champion_score == 5.0
    assert promoter.layout.champion(LINEAGE).read_bytes() == b"gen0-variant1"


def test_strictly_better_candidate_replaces_champion(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    _generation(promoter, 0, [1.0, 2.0, 3.0])
    promoter.check(LINEAGE, 0)
    _generation(promoter, 1, [2.5, 3.5, 0.0])
    decision = promoter.check(LINEAGE, 1)
    assert decision.promoted and decision.champion_score == 3.0
    assert promoter.layout.champion(LINEAGE).read_bytes() == b"gen1-variant1"


def test_champion_score_never_decreases(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    history = [[1.0, 0.0, 0.5], [0.2, 0.9, 0.1], [4.0, 3.0, 2.0], [3.9, 4.0, 1.0], [0.0, 0.0, 0.0]]
    scores = []
    for gen, gen_scores in enumerate(history):
        _generation(promoter, gen, gen_scores)
        promoter.check(LINEAGE, gen)
        scores.append(_champion_score(promoter, gen))
    assert scores == sorted(scores)
    assert scores[-1] == 4.0


def test_byte_scan_recovers_score_without_provenance(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    _generation(promoter, 0, [1.0, 7.0, 2.0])
    champion = promoter.layout.champion(LINEAGE)
    champion.parent.mkdir(parents=True)
    champion.write_bytes(b"gen0-variant1")
    _generation(promoter, 1, [6.0, 3.0, 1.0])
    decision = promoter.check(LINEAGE, 1)
    assert not decision.promoted
    assert decision.champion_score == 7.0
    recovered = json.loads(promoter.layout.champion_provenance(LINEAGE).read_text())
    assert (recovered["generation"], recovered["variant"]) == (0, 1)


def test_byte_scan_prefers_newest_generation(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    _generation(promoter, 0, [9.0, 0.0, 0.0], blobs=[b"same", b"a", b"b"])
    _generation(promoter, 1, [2.0, 3.0, 0.0], blobs=[b"same", b"c", b"d"])
    champion = promoter.layout.champion(LINEAGE)
    champion.parent.mkdir(parents=True)
    champion.write_bytes(b"same")
    found = promoter.find_by_bytes(LINEAGE, b"same", 1)
    assert (found.generation, found.variant, found.score) == (1, 0, 2.0)
    decision = promoter.check(LINEAGE, 1)
    assert decision.promoted and decision.champion_score == 2.0


def test_stale_provenance_falls_back_to_byte_scan(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    _generation(promoter, 0, [1.0, 2.0, 3.0])
    promoter.check(LINEAGE, 0)
    promoter.layout.champion(LINEAGE).write_bytes(b"gen0-variant0")
    assert _champion_score(promoter, 0) == 1.0


def test_unknown_champion_is_replaced(tmp_path: Path) -> None:
    promoter = _promoter(tmp_path)
    champion = promoter.layout.champion(LINEAGE)
    champion.parent.mkdir(parents=True)
    champion.write_bytes(b"hand-placed")
    _generation(promoter, 0, [0.1, 0.2, 0.3])
    decision = promoter.check(LINEAGE, 0)
    assert decision.promoted and decision.champion_score is None
    assert champion.read_bytes() == b"gen0-variant2"
