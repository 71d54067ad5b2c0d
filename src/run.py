"""
Metagenomics Reporting Pipeline
----------------------------------------------------------------------------------------
Builds per-analysis experiments from per-sample data bundles and curated phenotype
metadata, exports them as spreadsheets and renders statistical reports for each.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Third-Party Imports
import pandas as pd

# Local Imports
parent_dir = Path(__file__).resolve().parents[0]
sys.path.append(str(parent_dir))

from workflow_metagenomics import constants
from workflow_metagenomics.config import RunConfig, get_config
from workflow_metagenomics.errors import (
    BundleFormatError, EmptySampleSetError, InconsistentExperimentError, MetadataError
)
from workflow_metagenomics.logger import setup_logging
from workflow_metagenomics.utils.dir import ProjectDir
from workflow_metagenomics.workflow import MetagenomicsWorkflow

# ========================== INITIALIZATION & CONFIGURATION ========================== #

pd.set_option('future.no_silent_downcasting', True)

logger = logging.getLogger(constants.LOGGER_NAME)

FATAL_ERRORS = (
    MetadataError, EmptySampleSetError, InconsistentExperimentError, BundleFormatError
)

# =================================== MAIN WORKFLOW ================================== #

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the metagenomics reporting workflow.")
    parser.add_argument(
        "--config", type=Path, default=constants.DEFAULT_CONFIG_PATH,
        help="Path to the configuration file.",
    )
    parser.add_argument("--output-dir", type=Path, help="Root of the output tree.")
    parser.add_argument("--bundle-dir", type=Path, help="Directory of per-sample bundles.")

    metadata = parser.add_argument_group("metadata")
    metadata.add_argument("--excel", type=Path, help="Workbook with phenotypes sheets.")
    metadata.add_argument(
        "--metadata", type=Path, nargs="+", help="Phenotype TSV file(s), merged in order."
    )
    metadata.add_argument("--labels", type=Path, help="Phenolabels TSV file.")
    metadata.add_argument(
        "--duplicate-prefixes", nargs="+", help="Bundle name prefixes marking duplicates."
    )

    vetting = parser.add_argument_group("vetting")
    vetting.add_argument("--min-assembled-gbp", type=float)
    vetting.add_argument("--min-percent-assembled", type=float)
    vetting.add_argument("--max-discrete-classes", type=int)
    vetting.add_argument("--max-discrete-subclasses", type=int)

    experiments = parser.add_argument_group("experiments")
    experiments.add_argument("--analyses", nargs="+", help="Only build these analyses.")
    experiments.add_argument(
        "--stratify", dest="stratify_functional_by_taxonomy",
        action="store_true", default=None,
        help="Key functional features by taxon as well.",
    )
    experiments.add_argument(
        "--no-export", dest="export_tables", action="store_false", default=None,
        help="Skip writing spreadsheets into Tables/.",
    )
    experiments.add_argument(
        "--normalized", dest="export_normalized", action="store_true", default=None,
        help="Export relative abundances instead of counts.",
    )

    reports = parser.add_argument_group("reports")
    reports.add_argument(
        "--ordination", nargs="*", choices=constants.ORDINATION_METHODS,
        help="Ordination methods; pass no value to disable ordination.",
    )
    for kind in constants.REPORT_KINDS:
        if kind == constants.REPORT_ORDINATION:
            continue
        flag = kind.replace("_", "-")
        reports.add_argument(
            f"--{flag}", dest=kind, action=argparse.BooleanOptionalAction, default=None,
            help=f"Toggle {kind.replace('_', ' ')} reports.",
        )
    reports.add_argument(
        "--sequential", dest="parallel", action="store_false", default=None,
        help="Run report jobs one after another.",
    )
    reports.add_argument("--backend", choices=constants.POOL_BACKENDS)

    run = parser.add_argument_group("run")
    run.add_argument("--resume", action="store_true", default=None)
    run.add_argument("--replace-metadata", action="store_true", default=None)
    run.add_argument("--load-workers", type=int)
    run.add_argument("-v", "--verbose", action="store_true", default=None)
    return parser


def merge_args(config: Dict, args: argparse.Namespace) -> Dict:
    """Overlay command line values that were given onto the loaded config mapping."""
    config = dict(config)
    metadata = dict(config.get("metadata") or {})
    reports = dict(config.get("reports") or {})

    if args.excel is not None:
        metadata["excel"] = args.excel
    if args.metadata is not None:
        metadata["tsv"] = list(args.metadata)
    if args.labels is not None:
        metadata["labels"] = args.labels
    config["metadata"] = metadata

    top_level = (
        "output_dir", "bundle_dir", "duplicate_prefixes", "min_assembled_gbp",
        "min_percent_assembled", "max_discrete_classes", "max_discrete_subclasses",
        "analyses", "stratify_functional_by_taxonomy", "export_tables",
        "export_normalized", "resume", "replace_metadata", "load_workers", "verbose",
    )
    for key in top_level:
        value = getattr(args, key)
        if value is not None:
            config[key] = value

    if args.ordination is not None:
        reports["ordination"] = list(args.ordination)
    for key in (*constants.REPORT_KINDS, "parallel", "backend"):
        if key == constants.REPORT_ORDINATION:
            continue
        value = getattr(args, key)
        if value is not None:
            reports[key] = value
    config["reports"] = reports
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Run the entire workflow and return the process exit status."""
    args = build_parser().parse_args(argv)
    config = RunConfig.from_dict(merge_args(get_config(args.config), args))

    project_dir = ProjectDir(config.output_dir)
    setup_logging(project_dir.logs)
    try:
        summary = MetagenomicsWorkflow(config, project_dir).run()
    except FATAL_ERRORS as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except Exception:
        logger.critical("Fatal pipeline error", exc_info=True)
        if config.verbose:
            raise
        return 1

    if not summary.batch.ok:
        logger.warning(f"{len(summary.batch.failures)} report job(s) failed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
