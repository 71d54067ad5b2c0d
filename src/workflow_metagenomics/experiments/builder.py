# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Dict, Mapping, Optional, Sequence, Tuple

# Third-Party Imports
import pandas as pd

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.errors import EmptySampleSetError
from workflow_metagenomics.experiments.experiment import Experiment
from workflow_metagenomics.io.bundles import AnalysisTable, DataBundle
from workflow_metagenomics.metadata.reconcile import ReconciledMetadata
from workflow_metagenomics.utils.biom import df_to_biom, table_to_df
from workflow_metagenomics.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def stratify_by_taxonomy(data: pd.DataFrame) -> pd.DataFrame:
    """Key each functional feature by the taxon it was assigned to.
    
    Features become '<feature>|<taxon>'; rows without a taxon keep their plain key.
    """
    if constants.TAXON_COLUMN not in data.columns:
        return data
    data = data.copy()
    taxa = data[constants.TAXON_COLUMN].fillna("").astype(str).str.strip()
    has_taxon = taxa != ""
    data.loc[has_taxon, constants.FEATURE_COLUMN] = (
        data.loc[has_taxon, constants.FEATURE_COLUMN]
        + constants.STRATIFIED_SEPARATOR
        + taxa[has_taxon]
    )
    return data


def _collapse(data: pd.DataFrame) -> Tuple[pd.Series, pd.DataFrame]:
    """Sum counts per feature; keep the first annotation seen for each feature."""
    grouped = data.groupby(constants.FEATURE_COLUMN, sort=False)
    counts = grouped[constants.COUNT_COLUMN].sum()
    annotation_columns = [
        c for c in data.columns if c not in (constants.FEATURE_COLUMN, constants.COUNT_COLUMN)
    ]
    annotations = grouped[annotation_columns].first() if annotation_columns else (
        pd.DataFrame(index=counts.index)
    )
    return counts, annotations


def _prune(counts: pd.DataFrame, features: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Drop features with an empty key or no counts."""
    keep = (counts.index.astype(str).str.strip() != "") & (counts.sum(axis=1) > 0)
    counts = counts.loc[keep]
    return counts, features.reindex(counts.index)


def _as_experiment(
    analysis: str,
    category: str,
    counts: pd.DataFrame,
    features: pd.DataFrame,
    samples: pd.DataFrame
) -> Experiment:
    counts.index = counts.index.astype(str)
    features.index = features.index.astype(str)
    experiment = Experiment(
        analysis=analysis,
        category=category,
        table=df_to_biom(counts),
        feature_metadata=features,
        sample_metadata=samples,
    )
    experiment.check_consistency()
    return experiment

# ===================================== CLASSES ====================================== #

class ExperimentBuilder:
    """Builds one Experiment per analysis, or re-fits existing ones to new metadata.
    
    Args:
        analyses:                        Allow-list of analysis names; None keeps all.
        stratify_functional_by_taxonomy: Key functional features by taxon as well.
    """
    def __init__(
        self,
        analyses: Optional[Sequence[str]] = None,
        stratify_functional_by_taxonomy: bool = False
    ):
        self.analyses = tuple(analyses) if analyses is not None else None
        self.stratify_functional_by_taxonomy = stratify_functional_by_taxonomy

    @classmethod
    def from_config(cls, config) -> "ExperimentBuilder":
        return cls(config.analyses, config.stratify_functional_by_taxonomy)

    # ------------------------------- Construct mode -------------------------------- #

    def find_analyses(self, bundles: Mapping[str, DataBundle]) -> Dict[str, str]:
        """Analyses present in any bundle, mapped to their category.
        
        Taxonomic analyses come first, each group sorted by name. Only taxonomic
        analyses are kept when any bundle is marked taxonomy-only.
        """
        found: Dict[str, str] = {}
        for bundle in bundles.values():
            for name, table in bundle.tables.items():
                found.setdefault(name, table.category)

        if any(b.taxonomy_only for b in bundles.values()):
            dropped = [n for n, c in found.items() if c != constants.CATEGORY_TAXONOMIC]
            if dropped:
                logger.info(f"Bundles are taxonomy-only; skipping analyses: {sorted(dropped)}")
            found = {n: c for n, c in found.items() if c == constants.CATEGORY_TAXONOMIC}

        if self.analyses is not None:
            unknown = [a for a in self.analyses if a not in found]
            if unknown:
                logger.warning(f"Requested analyses not found in any bundle: {unknown}")
            found = {n: c for n, c in found.items() if n in self.analyses}

        order = {c: i for i, c in enumerate(constants.ANALYSIS_CATEGORIES)}
        return dict(sorted(found.items(), key=lambda item: (order[item[1]], item[0])))

    def construct(
        self,
        bundles: Mapping[str, DataBundle],
        metadata: ReconciledMetadata
    ) -> Dict[str, Experiment]:
        """Build experiments from per-sample tables.
        
        Args:
            bundles:  Bundles keyed by sample ID, duplicates already removed.
            metadata: Vetted metadata; its samples define the experiment columns.
        
        Returns:
            Experiments keyed by analysis name.
        
        Raises:
            EmptySampleSetError: If an analysis has no sample shared with the metadata.
        """
        analyses = self.find_analyses(bundles)
        if not analyses:
            logger.warning("No analyses found in the bundles")
            return {}

        experiments: Dict[str, Experiment] = {}
        with get_progress_bar() as progress:
            task = progress.add_task(_format_task_desc("Building experiments"), total=len(analyses))
            for analysis, category in analyses.items():
                experiments[analysis] = self._construct_one(analysis, category, bundles, metadata)
                progress.update(task, advance=1)
        return experiments

    def _sample_tables(
        self,
        analysis: str,
        bundles: Mapping[str, DataBundle],
        samples: Sequence[str]
    ) -> Dict[str, AnalysisTable]:
        return {
            s: bundles[s].tables[analysis]
            for s in samples
            if s in bundles and analysis in bundles[s].tables
        }

    def _prepare(self, table: AnalysisTable) -> pd.DataFrame:
        data = table.data
        if table.category == constants.CATEGORY_FUNCTIONAL:
            if self.stratify_functional_by_taxonomy:
                data = stratify_by_taxonomy(data)
            elif constants.TAXON_COLUMN in data.columns:
                data = data.drop(columns=constants.TAXON_COLUMN)
        return data

    def _construct_one(
        self,
        analysis: str,
        category: str,
        bundles: Mapping[str, DataBundle],
        metadata: ReconciledMetadata
    ) -> Experiment:
        tables = self._sample_tables(analysis, bundles, metadata.samples)
        if not tables:
            raise EmptySampleSetError(analysis)

        columns, annotations = {}, []
        for sample_id, table in tables.items():
            counts, features = _collapse(self._prepare(table))
            columns[sample_id] = counts
            annotations.append(features)

        counts = pd.concat(columns, axis=1, sort=False).fillna(0)
        features = pd.concat(annotations, sort=False)
        features = features[~features.index.duplicated(keep="first")]
        counts, features = _prune(counts, features)

        samples = list(tables)
        experiment = _as_experiment(
            analysis, category, counts, features, metadata.table.loc[samples]
        )
        logger.info(
            f"{'Built ' + analysis + ':':<30}{experiment.shape[1]:>6} samples "
            f"× {experiment.shape[0]:>5} features"
        )
        return experiment

    # ---------------------------- Replace-metadata mode ---------------------------- #

    def replace_metadata(
        self,
        experiments: Mapping[str, Experiment],
        metadata: ReconciledMetadata
    ) -> Dict[str, Experiment]:
        """Re-fit existing experiments to newly vetted metadata.
        
        Each experiment is narrowed to the samples it shares with `metadata`;
        features left empty or without counts are dropped.
        
        Raises:
            EmptySampleSetError:         If an experiment shares no sample.
            InconsistentExperimentError: If an experiment is inconsistent before or
                                         after the update.
        """
        updated: Dict[str, Experiment] = {}
        for analysis, experiment in experiments.items():
            experiment.check_consistency()
            current = set(experiment.samples)
            shared = [s for s in metadata.samples if s in current]
            if not shared:
                raise EmptySampleSetError(analysis)

            counts = table_to_df(experiment.table).loc[:, shared]
            counts, features = _prune(counts, experiment.feature_metadata)
            updated[analysis] = _as_experiment(
                analysis, experiment.category, counts, features, metadata.table.loc[shared]
            )
            dropped = len(current) - len(shared)
            if dropped:
                logger.info(f"Replaced metadata of '{analysis}': dropped {dropped} samples")
        return updated
