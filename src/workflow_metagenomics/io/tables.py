# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import List, Mapping, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.experiments.experiment import Experiment
from workflow_metagenomics.utils.biom import relative_abundance
from workflow_metagenomics.utils.dir import Dir

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def export_tables(
    experiments: Mapping[str, Experiment],
    as_normalized: bool,
    destination: Union[str, Path]
) -> List[Path]:
    """Write one workbook per experiment.
    
    Each workbook has a 'counts' sheet (features × samples), a 'features' sheet and
    a 'samples' sheet.
    
    Args:
        experiments:   Experiments keyed by analysis.
        as_normalized: Export relative abundances instead of raw counts.
        destination:   Output directory, created if needed.
    
    Returns:
        Paths of the written workbooks.
    """
    destination = Dir(destination).create()
    written = []
    for analysis, experiment in experiments.items():
        counts = relative_abundance(experiment.table) if as_normalized else experiment.counts()
        counts.index.name = constants.FEATURE_COLUMN
        suffix = ".relative" if as_normalized else ""
        path = destination / f"{analysis}{suffix}.xlsx"
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            counts.to_excel(writer, sheet_name="counts")
            experiment.feature_metadata.rename_axis(constants.FEATURE_COLUMN).to_excel(
                writer, sheet_name="features"
            )
            experiment.sample_metadata.rename_axis("sample").to_excel(
                writer, sheet_name="samples"
            )
        logger.debug(f"Exported {analysis} → {path}")
        written.append(path)
    logger.info(f"Exported {len(written)} tables to {destination}")
    return written
