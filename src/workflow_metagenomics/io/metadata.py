# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def _clean_phenotypes(df: pd.DataFrame) -> pd.DataFrame:
    df.columns = [str(c).strip() for c in df.columns]
    if df.columns.duplicated().any():
        duplicated = df.columns[df.columns.duplicated()].tolist()
        logger.debug(f"Found duplicate columns in metadata: {duplicated}. Removing duplicates.")
        df = df.loc[:, ~df.columns.duplicated()]
    return df.dropna(how="all").reset_index(drop=True)


def _clean_labels(df: pd.DataFrame) -> pd.DataFrame:
    """Index phenolabels by variable name, leaving the remaining columns untouched."""
    df = df.dropna(how="all")
    df = df.set_index(df.columns[0])
    df.index = df.index.astype(str).str.strip()
    df.index.name = "variable"
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df


def import_phenotypes_tsv(tsv_path: Union[str, Path]) -> pd.DataFrame:
    """Load one phenotype TSV file.
    
    Raises:
        FileNotFoundError: If specified path doesn't exist.
    """
    tsv_path = Path(tsv_path)
    if not tsv_path.exists():
        raise FileNotFoundError(f"Metadata file not found: {tsv_path}")
    return _clean_phenotypes(pd.read_csv(tsv_path, sep="\t", dtype=object))


def import_merged_phenotypes_tsv(tsv_paths: Sequence[Union[str, Path]]) -> pd.DataFrame:
    """Merge multiple phenotype TSV files into a single DataFrame.
    
    Args:
        tsv_paths: Paths to phenotype TSV files.
    
    Returns:
        Concatenated metadata DataFrame; columns missing from a file are left empty.
    
    Raises:
        FileNotFoundError: If no path was given or any file is missing.
    """
    if not tsv_paths:
        raise FileNotFoundError("No metadata TSV paths given")
    dfs: List[pd.DataFrame] = []
    with get_progress_bar() as progress:
        task = progress.add_task(_format_task_desc("Loading metadata files"), total=len(tsv_paths))
        for tsv_path in tsv_paths:
            dfs.append(import_phenotypes_tsv(tsv_path))
            progress.update(task, advance=1)
    merged = pd.concat(dfs, ignore_index=True, sort=False)
    return merged


def import_labels_tsv(tsv_path: Union[str, Path]) -> pd.DataFrame:
    tsv_path = Path(tsv_path)
    if not tsv_path.exists():
        raise FileNotFoundError(f"Phenolabels file not found: {tsv_path}")
    return _clean_labels(pd.read_csv(tsv_path, sep="\t", dtype=str, keep_default_na=False))


def import_metadata_excel(
    excel_path: Union[str, Path]
) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """Load the phenotypes sheet and, if present, the phenolabels sheet of a workbook."""
    excel_path = Path(excel_path)
    if not excel_path.exists():
        raise FileNotFoundError(f"Metadata workbook not found: {excel_path}")
    sheets = pd.read_excel(excel_path, sheet_name=None)
    lowered = {str(name).strip().lower(): df for name, df in sheets.items()}

    if constants.PHENOTYPES_SHEET in lowered:
        phenotypes = lowered[constants.PHENOTYPES_SHEET]
    else:
        first = next(iter(sheets))
        logger.warning(
            f"No '{constants.PHENOTYPES_SHEET}' sheet in {excel_path.name}; "
            f"using the first sheet '{first}'"
        )
        phenotypes = sheets[first]

    labels = lowered.get(constants.PHENOLABELS_SHEET)
    if labels is not None:
        labels = _clean_labels(labels.astype(object).where(labels.notna(), "").astype(str))
    return _clean_phenotypes(phenotypes), labels


def load_metadata(
    excel_path: Optional[Union[str, Path]] = None,
    tsv_paths: Optional[Sequence[Union[str, Path]]] = None,
    labels_path: Optional[Union[str, Path]] = None
) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """Load the phenotype table and optional phenolabels.
    
    Args:
        excel_path:  Workbook with 'phenotypes' and optionally 'phenolabels' sheets.
        tsv_paths:   Phenotype TSV files, used when no workbook is given.
        labels_path: Phenolabels TSV; overrides a sheet found in the workbook.
    
    Returns:
        Tuple of (phenotype table, phenolabels or None).
    """
    if excel_path is not None:
        phenotypes, labels = import_metadata_excel(excel_path)
    elif tsv_paths:
        phenotypes, labels = import_merged_phenotypes_tsv(tsv_paths), None
    else:
        raise ValueError("Either an Excel workbook or TSV metadata files are required")

    if labels_path is not None:
        labels = import_labels_tsv(labels_path)

    logger.info(
        f"{'Loaded metadata:':<30}{phenotypes.shape[0]:>6} samples "
        f"× {phenotypes.shape[1]:>5} cols"
    )
    return phenotypes, labels
