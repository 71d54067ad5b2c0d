# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

# Local Imports
from workflow_metagenomics import constants

# ===================================== CLASSES ====================================== #

class VariableKind(str, Enum):
    SAMPLE = constants.KIND_SAMPLE
    DISCRETE = constants.KIND_DISCRETE
    CONTINUOUS = constants.KIND_CONTINUOUS
    IGNORE = constants.KIND_IGNORE

    @classmethod
    def parse(cls, value: str) -> Optional["VariableKind"]:
        """Case-insensitive lookup; None for unrecognised values."""
        text = str(value).strip().lower()
        return next((kind for kind in cls if kind.value.lower() == text), None)


@dataclass(frozen=True)
class DiscreteVariable:
    name: str
    label: str
    labels: Tuple[str, ...]
    stratifiable: bool

    @property
    def cardinality(self) -> int:
        return len(self.labels)


@dataclass(frozen=True)
class ContinuousVariable:
    name: str
    label: str
    range: Tuple[float, float]


@dataclass(frozen=True)
class VariableClassification:
    """Which metadata variables downstream reports may use, and how.

    Attributes:
        discrete:   Variables with at most `max_discrete_classes` classes.
        continuous: Numeric variables.
        excluded:   Variables left out of both buckets, with the reason.
    """
    discrete: Dict[str, DiscreteVariable] = field(default_factory=dict)
    continuous: Dict[str, ContinuousVariable] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)

    @property
    def stratifiable(self) -> List[str]:
        return [name for name, var in self.discrete.items() if var.stratifiable]

    def kind_of(self, name: str) -> Optional[VariableKind]:
        if name in self.discrete:
            return VariableKind.DISCRETE
        if name in self.continuous:
            return VariableKind.CONTINUOUS
        return None


@dataclass(frozen=True)
class ColumnSelection:
    """Result of identifying the usable phenotype columns."""
    sample_column: str
    variables: Dict[str, VariableKind]
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def columns(self) -> List[str]:
        return [self.sample_column] + [
            name for name in self.variables if name != self.sample_column
        ]
