# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from typing import Mapping, Optional, Tuple

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_metagenomics.config import RunConfig
from workflow_metagenomics.experiments.experiment import Experiment
from workflow_metagenomics.io.bundles import DataBundle
from workflow_metagenomics.metadata.reconcile import ReconciledMetadata
from workflow_metagenomics.metadata.samples import SampleSet

# ===================================== CLASSES ====================================== #

class Stage(IntEnum):
    """Checkpointed stages, in the order the workflow passes them."""
    STARTED = 0
    METADATA_VETTED = 1
    EXPERIMENTS_BUILT = 2
    TABLES_EXPORTED = 3


@dataclass(frozen=True)
class RunContext:
    """State of one run, passed explicitly from stage to stage.

    Stages never mutate a context; they return an updated copy via `advance`.
    `bundles` is dropped once experiments exist and is never checkpointed.
    """
    config: RunConfig
    stage: Stage = Stage.STARTED
    samples: Optional[SampleSet] = None
    metadata: Optional[ReconciledMetadata] = None
    read_stats: Optional[pd.DataFrame] = None
    experiments: Mapping[str, Experiment] = field(default_factory=dict)
    exported: Tuple[Path, ...] = ()
    bundles: Optional[Mapping[str, DataBundle]] = field(default=None, repr=False)

    def advance(self, stage: Optional[Stage] = None, **changes) -> "RunContext":
        if stage is not None:
            changes["stage"] = stage
        return replace(self, **changes)

    def reached(self, stage: Stage) -> bool:
        return self.stage >= stage
