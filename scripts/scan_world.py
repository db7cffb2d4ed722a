#!/usr/bin/env python3
"""Print the planets and live units of every configured world pod.

Usage:
    python scripts/scan_world.py --config config/experiments/planets.json --hosts localhost
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from planet_evolution.config import load_experiment_config
from planet_evolution.environment.topology import WorldStatus, WorldTopology

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Scan world pods for planets and units")
    parser.add_argument("--config", type=Path, default=Path("config/experiments/planets.json"))
    parser.add_argument("--hosts", nargs="+", default=None, help="Override topology hosts")
    parser.add_argument("--num-pods", type=int, default=None, help="Override pods per host")
    args = parser.parse_args()

    config = load_experiment_config(args.config)
    if args.num_pods:
        config.topology.num_pods = args.num_pods
    hosts = args.hosts or config.topology.hosts
    topology = WorldTopology(config.topology, config.runtime)
    snapshot = asyncio.run(topology.scan(hosts))
    for planet in snapshot.planets:
        logger.info("planet %-12s at %s on %s:%d", planet.name, planet.position, planet.host, planet.port)
    status = WorldStatus.from_snapshot(snapshot)
    print(json.dumps(status.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    main()
