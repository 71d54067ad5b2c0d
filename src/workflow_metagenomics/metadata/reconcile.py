"""
Vetting of the sample metadata against the phenolabels and the samples with data.

The steps run in a fixed order and every failure is fatal:

    check_schema → identify_columns → project → index_by_sample
                 → sufficiency_filter → classify_variables

Running the reconciler on its own output returns the same table.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.errors import (
    AmbiguousSampleColumnError, EmptyMetadataError, InconsistentSchemaError,
    MissingColumnError, SchemaError
)
from workflow_metagenomics.metadata.schema import (
    ColumnSelection, ContinuousVariable, DiscreteVariable, VariableClassification,
    VariableKind
)

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class ReconciledMetadata:
    """Vetted metadata, frozen once reconciliation finishes.

    Attributes:
        table:          Phenotype table indexed by sample ID, in metadata order.
                        The sample column is kept so the table can be vetted again.
        labels:         Normalised phenolabels, or None if none were supplied.
        selection:      Sample column and retained variables.
        classification: Discrete and continuous variables.
        insufficient:   Samples dropped by the sufficiency thresholds.
    """
    table: pd.DataFrame
    labels: Optional[pd.DataFrame]
    selection: ColumnSelection
    classification: VariableClassification
    insufficient: tuple = ()

    @property
    def sample_column(self) -> str:
        return self.selection.sample_column

    @property
    def samples(self) -> List[str]:
        return self.table.index.tolist()

# ==================================== FUNCTIONS ===================================== #

def check_schema(labels: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
    """Validate phenolabels and normalise their `kind` values.
    
    Args:
        labels: Phenolabels indexed by variable name.
    
    Returns:
        Copy of `labels` with canonical kind names, or None.
    
    Raises:
        SchemaError: If the columns are not exactly {label, kind}, a variable is
                     listed twice or a kind is not recognised.
    """
    if labels is None:
        return None
    columns = {str(c).strip().lower() for c in labels.columns}
    expected = set(constants.PHENOLABELS_COLUMNS)
    if columns != expected or len(labels.columns) != len(expected):
        raise SchemaError(
            f"Phenolabels must have exactly the columns {sorted(expected)}, "
            f"found {list(labels.columns)}",
            columns=labels.columns,
        )
    labels = labels.copy()
    labels.columns = [str(c).strip().lower() for c in labels.columns]
    labels.index = labels.index.astype(str).str.strip()

    duplicated = labels.index[labels.index.duplicated()].unique().tolist()
    if duplicated:
        raise SchemaError(f"Variables listed more than once in phenolabels: {duplicated}")

    kinds = labels["kind"].map(VariableKind.parse)
    unknown = labels.index[kinds.isna()].tolist()
    if unknown:
        raise SchemaError(
            f"Unknown kind for variables {unknown}; "
            f"expected one of {list(constants.VARIABLE_KINDS)}"
        )
    labels["kind"] = [kind.value for kind in kinds]
    labels["label"] = [
        str(label).strip() if pd.notna(label) and str(label).strip() else name
        for name, label in zip(labels.index, labels["label"])
    ]
    return labels


def identify_columns(
    phenotypes: pd.DataFrame,
    labels: Optional[pd.DataFrame]
) -> ColumnSelection:
    """Pick the sample identifier column and the variables worth keeping.
    
    With phenolabels, every variable not marked Ignore is kept and exactly one must
    be marked Sample. Without them, the sample column is found by name and every
    other column is kept with its kind left to classification.
    
    Raises:
        InconsistentSchemaError:    More kept variables than phenotype columns.
        AmbiguousSampleColumnError: Zero or several sample columns.
    """
    if labels is None:
        candidates = {c.lower() for c in constants.SAMPLE_COLUMN_CANDIDATES}
        sample_columns = [c for c in phenotypes.columns if str(c).strip().lower() in candidates]
        if len(sample_columns) != 1:
            raise AmbiguousSampleColumnError(sample_columns)
        sample_column = sample_columns[0]
        variables: Dict[str, Optional[VariableKind]] = {sample_column: VariableKind.SAMPLE}
        variables.update({c: None for c in phenotypes.columns if c != sample_column})
        return ColumnSelection(sample_column, variables, {c: c for c in variables})

    kept = labels[labels["kind"] != VariableKind.IGNORE.value]
    if len(kept) > len(phenotypes.columns):
        raise InconsistentSchemaError(len(kept), len(phenotypes.columns))

    sample_columns = kept.index[kept["kind"] == VariableKind.SAMPLE.value].tolist()
    if len(sample_columns) != 1:
        raise AmbiguousSampleColumnError(sample_columns)

    variables = {name: VariableKind(kind) for name, kind in kept["kind"].items()}
    return ColumnSelection(sample_columns[0], variables, kept["label"].to_dict())


def _infer_numeric(df: pd.DataFrame, skip: Sequence[str] = ()) -> pd.DataFrame:
    """Convert columns whose non-empty values all parse as numbers."""
    for col in df.columns:
        if col in skip:
            continue
        values = df[col].dropna()
        if values.empty:
            continue
        converted = pd.to_numeric(values, errors="coerce")
        if converted.notna().all():
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def project(phenotypes: pd.DataFrame, selection: ColumnSelection) -> pd.DataFrame:
    """Narrow the phenotype table to the selected columns.
    
    Variables whose values all parse as numbers become numeric. The sample column
    is left as written, so IDs like '001' keep their leading zeros.
    
    Raises:
        MissingColumnError: If a selected variable is not a phenotype column.
        EmptyMetadataError: If the table has no rows.
    """
    missing = [c for c in selection.columns if c not in phenotypes.columns]
    if missing:
        raise MissingColumnError(missing)
    projected = phenotypes.loc[:, selection.columns].copy()
    if projected.empty:
        raise EmptyMetadataError("selecting metadata columns")
    return _infer_numeric(projected, skip=[selection.sample_column])


def _as_sample_ids(values: pd.Series) -> pd.Series:
    """Render sample IDs as strings; integral floats lose their '.0'."""
    def fmt(value):
        if pd.isna(value):
            return ""
        if isinstance(value, (float, np.floating)) and float(value).is_integer():
            return str(int(value))
        return str(value).strip()
    return values.map(fmt)


def index_by_sample(
    table: pd.DataFrame,
    sample_column: str,
    resolved: Iterable[str]
) -> pd.DataFrame:
    """Key rows by sample ID and keep only samples that have data.
    
    Rows without data are dropped silently. Rows without an ID and repeated IDs
    are dropped with a warning, keeping the first occurrence.
    
    Raises:
        EmptyMetadataError: If no row is left.
    """
    table = table.copy()
    ids = _as_sample_ids(table[sample_column])
    table[sample_column] = ids

    blank = ids == ""
    if blank.any():
        logger.warning(f"Dropping {int(blank.sum())} metadata rows without a sample ID")
    duplicated = ids.duplicated() & ~blank
    if duplicated.any():
        logger.warning(
            f"Duplicate sample IDs in metadata, keeping the first row: "
            f"{sorted(set(ids[duplicated]))}"
        )
    table = table[~blank & ~duplicated]
    table.index = pd.Index(table[sample_column].tolist(), dtype=object)

    resolved = set(map(str, resolved))
    table = table[table.index.isin(resolved)]
    if table.empty:
        raise EmptyMetadataError("matching metadata to samples with data")
    return table


def sufficiency_filter(
    table: pd.DataFrame,
    read_stats: Optional[pd.DataFrame],
    min_assembled_gbp: float = 0.0,
    min_percent_assembled: float = 0.0
) -> pd.DataFrame:
    """Drop samples whose assembly falls short of either threshold.
    
    Samples without read statistics are kept. Nothing happens when no bundle
    carried read statistics or both thresholds are 0.
    
    Raises:
        EmptyMetadataError: If every sample is dropped.
    """
    if read_stats is None or (min_assembled_gbp <= 0 and min_percent_assembled <= 0):
        return table

    stats = read_stats.reindex(table.index)
    insufficient = pd.Series(False, index=table.index)
    for column, threshold in (
        (constants.READ_STATS_GBP, min_assembled_gbp),
        (constants.READ_STATS_PERCENT, min_percent_assembled),
    ):
        if threshold > 0 and column in stats.columns:
            insufficient |= stats[column].lt(threshold).fillna(False)

    if insufficient.any():
        logger.warning(
            f"Dropping {int(insufficient.sum())} samples below the sufficiency thresholds "
            f"(≥{min_assembled_gbp} Gbp, ≥{min_percent_assembled}% assembled): "
            f"{', '.join(table.index[insufficient])}"
        )
    table = table[~insufficient]
    if table.empty:
        raise EmptyMetadataError("applying the sufficiency thresholds")
    return table


def _is_numeric(values: pd.Series) -> bool:
    if pd.api.types.is_bool_dtype(values):
        return False
    if pd.api.types.is_numeric_dtype(values):
        return True
    return pd.to_numeric(values, errors="coerce").notna().all()


def classify_variables(
    table: pd.DataFrame,
    selection: ColumnSelection,
    max_discrete_classes: int = constants.DEFAULT_MAX_DISCRETE_CLASSES,
    max_discrete_subclasses: int = constants.DEFAULT_MAX_DISCRETE_SUBCLASSES,
    ignore_values: Sequence[str] = constants.DEFAULT_IGNORE_VALUES
) -> VariableClassification:
    """Sort the retained variables into discrete and continuous buckets.
    
    Args:
        table:                   Phenotype table after filtering.
        selection:               Retained variables and their declared kinds.
        max_discrete_classes:    Discrete variables with more classes are excluded.
        max_discrete_subclasses: Discrete variables with at most this many classes
                                 are eligible for stratified comparisons.
        ignore_values:           Values that do not count as a class.
    
    Returns:
        VariableClassification. Every numeric variable is continuous; unless it is
        declared continuous it is also discrete when its class count allows.
    """
    ignore = {str(v).strip().lower() for v in ignore_values}
    discrete, continuous, excluded = {}, {}, {}

    for name, kind in selection.variables.items():
        if name == selection.sample_column or kind == VariableKind.SAMPLE:
            continue
        label = selection.labels.get(name, name)
        values = table[name].dropna()
        values = values[~values.astype(str).str.strip().str.lower().isin(ignore)]
        if values.empty:
            excluded[name] = "no usable values"
            logger.warning(f"Variable '{name}' has no usable values and is excluded")
            continue

        if _is_numeric(values):
            as_numbers = pd.to_numeric(values, errors="coerce")
            continuous[name] = ContinuousVariable(
                name, label, (float(as_numbers.min()), float(as_numbers.max()))
            )
        elif kind == VariableKind.CONTINUOUS:
            excluded[name] = "declared continuous but not numeric"
            logger.warning(f"Variable '{name}' is declared continuous but is not numeric")
            continue
        if kind == VariableKind.CONTINUOUS:
            continue

        classes = tuple(sorted(values.astype(str).str.strip().unique()))
        if len(classes) <= max_discrete_classes:
            discrete[name] = DiscreteVariable(
                name, label, classes, stratifiable=len(classes) <= max_discrete_subclasses
            )
        else:
            logger.warning(
                f"Variable '{name}' has {len(classes)} classes, more than the maximum of "
                f"{max_discrete_classes}; it is excluded from discrete analyses"
            )
            if name not in continuous:
                excluded[name] = (
                    f"{len(classes)} classes exceeds maximum of {max_discrete_classes}"
                )

    logger.info(
        f"{'Classified variables:':<30}{len(discrete):>6} discrete, "
        f"{len(continuous)} continuous, {len(excluded)} excluded"
    )
    return VariableClassification(discrete, continuous, excluded)


def wanted_samples(phenotypes: pd.DataFrame, labels: Optional[pd.DataFrame]) -> List[str]:
    """Sample IDs listed in the metadata, in order, without blanks or repeats."""
    selection = identify_columns(phenotypes, check_schema(labels))
    if selection.sample_column not in phenotypes.columns:
        raise MissingColumnError([selection.sample_column])
    ids = _as_sample_ids(phenotypes[selection.sample_column])
    return [s for s in dict.fromkeys(ids) if s]


class MetadataReconciler:
    """Runs the vetting steps with thresholds taken from the run configuration."""

    def __init__(
        self,
        max_discrete_classes: int = constants.DEFAULT_MAX_DISCRETE_CLASSES,
        max_discrete_subclasses: int = constants.DEFAULT_MAX_DISCRETE_SUBCLASSES,
        min_assembled_gbp: float = 0.0,
        min_percent_assembled: float = 0.0,
        ignore_values: Sequence[str] = constants.DEFAULT_IGNORE_VALUES
    ):
        self.max_discrete_classes = max_discrete_classes
        self.max_discrete_subclasses = max_discrete_subclasses
        self.min_assembled_gbp = min_assembled_gbp
        self.min_percent_assembled = min_percent_assembled
        self.ignore_values = tuple(ignore_values)

    @classmethod
    def from_config(cls, config) -> "MetadataReconciler":
        return cls(
            max_discrete_classes=config.max_discrete_classes,
            max_discrete_subclasses=config.max_discrete_subclasses,
            min_assembled_gbp=config.min_assembled_gbp,
            min_percent_assembled=config.min_percent_assembled,
            ignore_values=config.ignore_values,
        )

    def run(
        self,
        phenotypes: pd.DataFrame,
        labels: Optional[pd.DataFrame],
        resolved: Iterable[str],
        read_stats: Optional[pd.DataFrame] = None
    ) -> ReconciledMetadata:
        """Vet `phenotypes` against `labels` and the resolved samples.
        
        Raises:
            MetadataError: Any of its subclasses, naming the offending variables.
        """
        labels = check_schema(labels)
        selection = identify_columns(phenotypes, labels)
        table = project(phenotypes, selection)
        table = index_by_sample(table, selection.sample_column, resolved)
        before = table.index.tolist()
        table = sufficiency_filter(
            table, read_stats, self.min_assembled_gbp, self.min_percent_assembled
        )
        insufficient = tuple(s for s in before if s not in table.index)
        classification = classify_variables(
            table, selection, self.max_discrete_classes, self.max_discrete_subclasses,
            self.ignore_values
        )
        logger.info(
            f"{'Vetted metadata:':<30}{table.shape[0]:>6} samples "
            f"× {table.shape[1]:>5} cols"
        )
        return ReconciledMetadata(table, labels, selection, classification, insufficient)
