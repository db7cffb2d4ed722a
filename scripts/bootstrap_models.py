#!/usr/bin/env python3
"""Build generation-0 models for every configured lineage.

Usage:
    python scripts/bootstrap_models.py --config config/experiments/planets.json
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from planet_evolution.config import load_experiment_config
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import build_lineages
from planet_evolution.models.policy import seed_initial_models

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Write models/0/{type}_{mode}.json")
    parser.add_argument("--config", type=Path, default=Path("config/experiments/planets.json"))
    parser.add_argument("--models-root", type=Path, default=None, help="Override artifact root")
    parser.add_argument("--seed", type=int, default=None, help="Override initialisation seed")
    args = parser.parse_args()

    config = load_experiment_config(args.config, env_overrides=False)
    root = args.models_root or config.models_root
    seed = config.seed if args.seed is None else args.seed
    created = seed_initial_models(ArtifactLayout(root), build_lineages(config), config.network.layers, seed=seed)
    logger.info("Created %d base model(s) under %s", len(created), root / "0")


if __name__ == "__main__":
    main()
