"""Process-scoped run context: every piece of shared state, explicitly owned."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from planet_evolution.config import ExperimentConfig
from planet_evolution.environment.runtime import TcpAgentRuntime
from planet_evolution.environment.topology import WorldTopology
from planet_evolution.evolution.ledger import StageLedger
from planet_evolution.interfaces import AgentRuntime, ModelProvider, Topology
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage, build_lineages
from planet_evolution.metrics.persistence import StatusSink
from planet_evolution.metrics.status import StatusLog
from planet_evolution.models.policy import TorchPolicyProvider
from planet_evolution.utils.ids import lease_owner

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    config: ExperimentConfig
    layout: ArtifactLayout
    lineages: list[Lineage]
    provider: ModelProvider
    runtime: AgentRuntime
    topology: Topology
    status: StatusLog
    ledger: StageLedger
    owner: str = field(default_factory=lease_owner)

    @classmethod
    def create(
        cls,
        config: ExperimentConfig,
        *,
        provider: Optional[ModelProvider] = None,
        runtime: Optional[AgentRuntime] = None,
        topology: Optional[Topology] = None,
    ) -> "RunContext":
        layout = ArtifactLayout(config.models_root)
        config.models_root.mkdir(parents=True, exist_ok=True)
        sink = StatusSink(config.models_root / config.status.log_file) if config.status.log_file else None
        context = cls(
            config=config,
            layout=layout,
            lineages=build_lineages(config),
            provider=provider or TorchPolicyProvider(),
            runtime=runtime or TcpAgentRuntime(config.runtime),
            topology=topology or WorldTopology(config.topology, config.runtime),
            status=StatusLog(config.status.buffer_limit, sink=sink),
            ledger=StageLedger(config.models_root / config.ledger.filename, lease_seconds=config.ledger.lease_seconds),
        )
        logger.info(
            "Run context for %r: %d lineages, models at %s, owner %s",
            config.name,
            len(context.lineages),
            config.models_root,
            context.owner,
        )
        return context


__all__ = ["RunContext"]
