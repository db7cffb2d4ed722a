"""Planet evolution public API."""

from planet_evolution.config import ExperimentConfig, load_experiment_config
from planet_evolution.context import RunContext
from planet_evolution.environment.dispatch import DispatchController
from planet_evolution.environment.runtime import TcpAgentRuntime
from planet_evolution.environment.topology import WorldTopology
from planet_evolution.evolution.aggregate import Aggregator
from planet_evolution.evolution.champion import ChampionPromoter
from planet_evolution.evolution.generator import VariantGenerator
from planet_evolution.evolution.ledger import StageLedger
from planet_evolution.evolution.loop import GenerationLoop
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage, build_lineages
from planet_evolution.metrics.status import StatusLog
from planet_evolution.models.policy import TorchPolicyProvider

__all__ = [
    "Aggregator",
    "ArtifactLayout",
    "ChampionPromoter",
    "DispatchController",
    "ExperimentConfig",
    "GenerationLoop",
    "Lineage",
    "RunContext",
    "StageLedger",
    "StatusLog",
    "TcpAgentRuntime",
    "TorchPolicyProvider",
    "VariantGenerator",
    "WorldTopology",
    "build_lineages",
    "load_experiment_config",
]
