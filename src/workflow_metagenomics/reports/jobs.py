# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.config import ReportsConfig
from workflow_metagenomics.experiments.experiment import Experiment
from workflow_metagenomics.metadata.schema import VariableClassification

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class RenderSettings:
    """Read-only configuration shared by every report job of a run."""
    discrete: Tuple[str, ...] = ()
    continuous: Tuple[str, ...] = ()
    stratifiable: Tuple[str, ...] = ()
    colors: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    top_n_features: int = constants.DEFAULT_TOP_N_FEATURES
    p_value_threshold: float = constants.DEFAULT_P_VALUE_THRESHOLD

    @classmethod
    def build(
        cls,
        classification: VariableClassification,
        reports: ReportsConfig
    ) -> "RenderSettings":
        return cls(
            discrete=tuple(classification.discrete),
            continuous=tuple(classification.continuous),
            stratifiable=tuple(classification.stratifiable),
            colors=build_color_map(classification),
            top_n_features=reports.top_n_features,
            p_value_threshold=reports.p_value_threshold,
        )


@dataclass(frozen=True, eq=False)
class ReportJob:
    """One report of one analysis. Jobs share nothing mutable."""
    analysis: str
    kind: str
    experiment: Experiment
    settings: RenderSettings
    method: Optional[str] = None

    @property
    def name(self) -> str:
        parts = [self.analysis, self.kind] + ([self.method] if self.method else [])
        return "/".join(parts)

    @property
    def subdir(self) -> str:
        return f"{self.kind}_{self.method}" if self.method else self.kind

    def __repr__(self) -> str:
        return f"ReportJob({self.name})"

# ==================================== FUNCTIONS ===================================== #

def build_color_map(
    classification: VariableClassification,
    palette: Tuple[str, ...] = constants.DEFAULT_PALETTE
) -> Dict[str, Dict[str, str]]:
    """Assign a palette color to every class of every discrete variable."""
    return {
        name: {
            label: palette[i % len(palette)] for i, label in enumerate(variable.labels)
        }
        for name, variable in classification.discrete.items()
    }


def build_report_jobs(
    reports: ReportsConfig,
    experiments: Mapping[str, Experiment],
    settings: RenderSettings
) -> List[ReportJob]:
    """Expand enabled report kinds × analyses into independent jobs.
    
    Jobs are ordered by report kind, then analysis; every ordination method gets
    its own job.
    """
    jobs: List[ReportJob] = []
    for kind in reports.enabled_kinds():
        methods = reports.ordination if kind == constants.REPORT_ORDINATION else (None,)
        for analysis, experiment in experiments.items():
            for method in methods:
                jobs.append(ReportJob(analysis, kind, experiment, settings, method))
    logger.info(
        f"Prepared {len(jobs)} report jobs "
        f"({', '.join(reports.enabled_kinds()) or 'none enabled'})"
    )
    return jobs
