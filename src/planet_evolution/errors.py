"""Error taxonomy for the evolution pipeline."""

from __future__ import annotations

from pathlib import Path


class PlanetEvolutionError(RuntimeError):
    """Base class for pipeline failures."""


class MissingBaseArtifact(PlanetEvolutionError):
    """Raised when a generation's base model is absent or unparsable.

    Fatal for that lineage in that generation: the operator has to repair the
    artifact tree and resume.
    """

    def __init__(self, lineage_key: str, generation: int, path: Path | str, reason: str) -> None:
        self.lineage_key = lineage_key
        self.generation = generation
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"[{lineage_key} gen {generation}] base artifact {self.path}: {reason}")


class RemoteUnavailable(PlanetEvolutionError):
    """Raised when the agent runtime cannot be reached."""


class RuntimeCommandError(PlanetEvolutionError):
    """Raised when the agent runtime rejects or garbles a command."""


class MalformedArtifactOrSummary(PlanetEvolutionError):
    """Raised when a persisted JSON document does not have the expected shape."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class PartialSpawnFailure(PlanetEvolutionError):
    """Raised for a single unit that failed to spawn; never aborts the batch."""

    def __init__(self, unit_name: str, reason: str) -> None:
        self.unit_name = unit_name
        self.reason = reason
        super().__init__(f"spawn of {unit_name} failed: {reason}")


class WriteFailure(PlanetEvolutionError):
    """Raised when an artifact could not be persisted."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"write to {self.path} failed: {reason}")


__all__ = [
    "MalformedArtifactOrSummary",
    "MissingBaseArtifact",
    "PartialSpawnFailure",
    "PlanetEvolutionError",
    "RemoteUnavailable",
    "RuntimeCommandError",
    "WriteFailure",
]
