#!/usr/bin/env python3
"""Run the planet evolution loop.

Probes the agent runtime, then drives every lineage through ``episodes``
generations. Safe to kill and rerun: finished work is read back from disk.

Usage:
    python scripts/run_evolution.py --config config/experiments/planets.json
    python scripts/run_evolution.py --config config/experiments/planets.yaml --episodes 3
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from planet_evolution.config import load_experiment_config
from planet_evolution.context import RunContext
from planet_evolution.environment.runtime import TcpAgentRuntime
from planet_evolution.environment.topology import probe_with_retries
from planet_evolution.errors import RemoteUnavailable
from planet_evolution.evolution.loop import GenerationLoop
from planet_evolution.models.policy import seed_initial_models

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def _run(context: RunContext, probe: bool) -> None:
    runtime_cfg = context.config.runtime
    if probe:
        try:
            await probe_with_retries(
                TcpAgentRuntime(runtime_cfg),
                attempts=runtime_cfg.probe_attempts,
                delay=runtime_cfg.probe_delay,
                timeout=runtime_cfg.probe_timeout,
            )
        except RemoteUnavailable as exc:
            logger.error("Continuing without a reachable runtime: %s", exc)
    reports = await GenerationLoop(context).run()
    for report in reports:
        logger.info(
            "gen %d: %d evaluated, %d skipped, %d promoted, %d failed",
            report.generation,
            report.evaluated,
            report.skipped,
            sum(1 for decision in report.promotions.values() if decision.promoted),
            len(report.failed),
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Evolve planet-navigation policies")
    parser.add_argument("--config", type=Path, default=Path("config/experiments/planets.json"))
    parser.add_argument("--episodes", type=int, default=None, help="Override generation count")
    parser.add_argument("--models-root", type=Path, default=None, help="Override artifact root")
    parser.add_argument("--no-probe", action="store_true", help="Skip the startup reachability probe")
    parser.add_argument("--no-bootstrap", action="store_true", help="Do not build missing gen-0 models")
    args = parser.parse_args()

    config = load_experiment_config(args.config)
    if args.episodes is not None:
        config.episodes = args.episodes
    if args.models_root is not None:
        config.models_root = args.models_root

    context = RunContext.create(config)
    if not args.no_bootstrap:
        seed_initial_models(context.layout, context.lineages, config.network.layers, seed=config.seed)
    asyncio.run(_run(context, probe=not args.no_probe))


if __name__ == "__main__":
    main()
