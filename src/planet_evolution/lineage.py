"""Lineage identity: numeric representation tags, structural modes, registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from planet_evolution.config import ExperimentConfig

logger = logging.getLogger(__name__)

_INT_BOUNDS = {
    8: (-(2**7), 2**7 - 1),
    16: (-(2**15), 2**15 - 1),
    32: (-(2**31), 2**31 - 1),
    64: (-(2**63), 2**63 - 1),
}


class NumericType(str, Enum):
    """Closed set of weight representations a lineage can evolve in."""

    INT = "int"
    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    UINT = "uint"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @property
    def is_integer(self) -> bool:
        return not self.value.startswith("float")

    @property
    def is_unsigned(self) -> bool:
        return self.value.startswith("uint")

    @property
    def bits(self) -> int:
        digits = "".join(ch for ch in self.value if ch.isdigit())
        return int(digits) if digits else 64

    @property
    def bounds(self) -> tuple[float, float]:
        """Inclusive representable range of a stored weight."""
        if not self.is_integer:
            return (float("-inf"), float("inf"))
        lo, hi = _INT_BOUNDS[self.bits]
        if self.is_unsigned:
            return (0.0, float(hi - lo))
        return (float(lo), float(hi))

    @property
    def scale(self) -> float:
        """Fixed-point scale: stored integer weights are ``real_value * scale``."""
        return 64.0 if self.is_integer else 1.0


class Mode(str, Enum):
    STANDARD = "Standard"
    REPLAY = "Replay"
    DYNAMIC_REPLAY = "DynamicReplay"

    def replay_settings(self) -> dict[str, Any] | None:
        """Replay configuration applied to the first hidden layer, if any."""
        if self is Mode.REPLAY:
            return {"layer": 1, "phase": "after", "offset": -1, "max_replay": 1}
        if self is Mode.DYNAMIC_REPLAY:
            return {"layer": 1, "budget": 3, "gate": 0.6, "gate_to_reps": [[0.8, 3], [0.6, 2], [0.0, 1]]}
        return None


@dataclass(frozen=True)
class Lineage:
    """One independent evolutionary line: numeric type x structural mode."""

    numeric_type: NumericType
    mode: Mode

    @property
    def key(self) -> str:
        return f"{self.numeric_type.value}_{self.mode.value}"

    @classmethod
    def parse(cls, key: str) -> "Lineage":
        numeric, sep, mode = key.partition("_")
        if not sep:
            raise ValueError(f"lineage key {key!r} is not of the form <type>_<mode>")
        return cls(NumericType(numeric), Mode(mode))

    def __str__(self) -> str:
        return self.key


def _coerce(values: Iterable[str], enum_type: type[Enum], label: str) -> list[Any]:
    parsed: list[Any] = []
    for raw in values:
        try:
            tag = enum_type(raw)
        except ValueError:
            logger.warning("Skipping unknown %s %r", label, raw)
            continue
        if tag not in parsed:
            parsed.append(tag)
    return parsed


def build_lineages(config: "ExperimentConfig") -> list[Lineage]:
    """Enumerate every requested (numeric type, mode) pair, types outermost."""
    numeric_types = _coerce(config.numerical_types, NumericType, "numeric type")
    modes = _coerce(config.modes, Mode, "mode")
    lineages = [Lineage(numeric, mode) for numeric in numeric_types for mode in modes]
    logger.info("Registered %d lineages: %s", len(lineages), ", ".join(l.key for l in lineages))
    return lineages


__all__ = ["Lineage", "Mode", "NumericType", "build_lineages"]
