# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

# Third-Party Imports
import yaml

# Local Imports
from workflow_metagenomics import constants

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on 
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            if value.startswith("./") or value.startswith("../"):
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, list):
            config[key] = [
                (config_dir / v).resolve()
                if isinstance(v, str) and (v.startswith("./") or v.startswith("../"))
                else v
                for v in value
            ]
        elif isinstance(value, dict):
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def get_config(
    config_path: Union[str, Path] = constants.DEFAULT_CONFIG_PATH
) -> Dict:
    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    config_dir = Path(config_path).resolve().parent
    return resolve_relative_paths(config, config_dir)

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class ReportsConfig:
    """Which report kinds to generate and how to run them.

    Attributes:
        ordination:       Ordination methods; each method is its own job per analysis.
        comparative:      Group comparisons over discrete variables.
        correlation:      Feature correlations with continuous variables.
        exploratory:      Top features and per-sample summaries.
        presence_absence: Feature prevalence per discrete group.
        alpha:            Alpha diversity per sample.
        parallel:         Run jobs on a worker pool instead of one after another.
        backend:          Worker pool flavour, 'process' or 'thread'.
        top_n_features:   Number of features reported by the exploratory report.
        p_value_threshold: Significance cut-off written into comparative reports.
    """
    ordination: Tuple[str, ...] = ()
    comparative: bool = False
    correlation: bool = False
    exploratory: bool = False
    presence_absence: bool = False
    alpha: bool = False
    parallel: bool = True
    backend: str = "process"
    top_n_features: int = constants.DEFAULT_TOP_N_FEATURES
    p_value_threshold: float = constants.DEFAULT_P_VALUE_THRESHOLD

    def __post_init__(self):
        unknown = [m for m in self.ordination if m not in constants.ORDINATION_METHODS]
        if unknown:
            raise ValueError(
                f"Unknown ordination methods: {unknown}. "
                f"Must be among {list(constants.ORDINATION_METHODS)}"
            )
        if self.backend not in constants.POOL_BACKENDS:
            raise ValueError(
                f"Invalid backend: {self.backend}. "
                f"Must be one of {list(constants.POOL_BACKENDS)}"
            )

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> "ReportsConfig":
        config = dict(config or {})
        ordination = config.get("ordination", ())
        if ordination is True:
            ordination = constants.DEFAULT_ORDINATION_METHODS
        elif not ordination:
            ordination = ()
        elif isinstance(ordination, str):
            ordination = (ordination,)
        config["ordination"] = tuple(str(m).lower() for m in ordination)
        return cls(**_known_keys(cls, config))

    def enabled_kinds(self) -> List[str]:
        """Report kinds switched on, in submission order."""
        return [
            kind for kind in constants.REPORT_KINDS
            if (self.ordination if kind == constants.REPORT_ORDINATION else getattr(self, kind))
        ]


@dataclass(frozen=True)
class RunConfig:
    """Everything the workflow needs to know, built once from the YAML config and CLI.

    Attributes:
        output_dir:                      Root of the run's output tree.
        bundle_dir:                      Directory holding one bundle per sample.
        metadata_excel:                  Excel workbook with phenotypes/phenolabels.
        metadata_tsv:                    Phenotype TSV files, merged in order.
        metadata_labels:                 Phenolabels TSV accompanying `metadata_tsv`.
        duplicate_prefixes:              Bundles whose name starts with one of these
                                         are excluded before resolving samples.
        analyses:                        Allow-list of analyses; None keeps all.
        min_assembled_gbp:               Minimum assembled gigabases per sample.
        min_percent_assembled:           Minimum percentage of reads assembled.
        max_discrete_classes:            Cardinality cap for discrete variables.
        max_discrete_subclasses:         Cardinality cap for stratified comparisons.
        ignore_values:                   Values not counted as a class.
        stratify_functional_by_taxonomy: Key functional features by taxon as well.
        export_tables:                   Write spreadsheets into `Tables/`.
        export_normalized:               Export relative abundances instead of counts.
        resume:                          Continue from the checkpoint if present.
        replace_metadata:                On resume, swap the metadata of built
                                         experiments instead of rebuilding them.
        load_workers:                    Threads used for loading bundles.
        verbose:                         Re-raise unexpected errors.
        reports:                         Report selection, see `ReportsConfig`.
    """
    output_dir: Path
    bundle_dir: Optional[Path] = None
    metadata_excel: Optional[Path] = None
    metadata_tsv: Tuple[Path, ...] = ()
    metadata_labels: Optional[Path] = None
    duplicate_prefixes: Tuple[str, ...] = ()
    analyses: Optional[Tuple[str, ...]] = None
    min_assembled_gbp: float = 0.0
    min_percent_assembled: float = 0.0
    max_discrete_classes: int = constants.DEFAULT_MAX_DISCRETE_CLASSES
    max_discrete_subclasses: int = constants.DEFAULT_MAX_DISCRETE_SUBCLASSES
    ignore_values: Tuple[str, ...] = constants.DEFAULT_IGNORE_VALUES
    stratify_functional_by_taxonomy: bool = False
    export_tables: bool = True
    export_normalized: bool = False
    resume: bool = False
    replace_metadata: bool = False
    load_workers: int = constants.DEFAULT_LOAD_WORKERS
    verbose: bool = False
    reports: ReportsConfig = field(default_factory=ReportsConfig)

    def __post_init__(self):
        if self.max_discrete_subclasses > self.max_discrete_classes:
            raise ValueError(
                f"max_discrete_subclasses ({self.max_discrete_subclasses}) cannot "
                f"exceed max_discrete_classes ({self.max_discrete_classes})"
            )
        if self.min_assembled_gbp < 0 or self.min_percent_assembled < 0:
            raise ValueError("Sufficiency thresholds must be non-negative")

    @classmethod
    def from_dict(cls, config: Dict) -> "RunConfig":
        """Build a RunConfig from the nested mapping returned by `get_config`."""
        config = dict(config)
        if not config.get("output_dir"):
            raise ValueError("Configuration is missing 'output_dir'")

        metadata = config.pop("metadata", None) or {}
        tsv = metadata.get("tsv") or ()
        if isinstance(tsv, (str, Path)):
            tsv = [tsv]
        config.setdefault("metadata_excel", metadata.get("excel"))
        config.setdefault("metadata_tsv", tsv)
        config.setdefault("metadata_labels", metadata.get("labels"))

        for key in ("output_dir", "bundle_dir", "metadata_excel", "metadata_labels"):
            if config.get(key) is not None:
                config[key] = Path(config[key])
        config["metadata_tsv"] = tuple(Path(p) for p in config.get("metadata_tsv") or ())
        config["duplicate_prefixes"] = tuple(config.get("duplicate_prefixes") or ())
        config["ignore_values"] = tuple(
            str(v) for v in config.get("ignore_values", constants.DEFAULT_IGNORE_VALUES)
        )
        if config.get("analyses") is not None:
            config["analyses"] = tuple(config["analyses"])
        config["reports"] = ReportsConfig.from_dict(config.get("reports"))
        return cls(**_known_keys(cls, config))


def _known_keys(cls: Any, config: Dict) -> Dict:
    """Drop keys the dataclass does not declare, so stray YAML keys are harmless."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in config.items() if k in names}
