# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from dataclasses import dataclass
from typing import List

# Third-Party Imports
import pandas as pd
from biom.table import Table

# Local Imports
from workflow_metagenomics.errors import InconsistentExperimentError
from workflow_metagenomics.utils.biom import df_to_biom, feature_totals, table_to_df

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True, eq=False)
class Experiment:
    """Counts of one analysis paired with feature and sample metadata.

    Attributes:
        analysis:         Analysis tag, e.g. 'genus' or 'kegg'.
        category:         'taxonomic' or 'functional'.
        table:            BIOM table, features × samples.
        feature_metadata: Feature annotations indexed by feature ID.
        sample_metadata:  Vetted phenotype rows indexed by sample ID.
    """
    analysis: str
    category: str
    table: Table
    feature_metadata: pd.DataFrame
    sample_metadata: pd.DataFrame

    @property
    def samples(self) -> List[str]:
        return list(self.table.ids(axis='sample'))

    @property
    def features(self) -> List[str]:
        return list(self.table.ids(axis='observation'))

    @property
    def shape(self):
        """(n_features, n_samples)"""
        return self.table.shape

    def counts(self) -> pd.DataFrame:
        """Dense features × samples counts."""
        return table_to_df(self.table)

    def check_consistency(self) -> None:
        """Raise InconsistentExperimentError unless counts and metadata line up.

        The sample metadata must hold exactly the table's samples, the feature
        metadata exactly its features, and no feature may be empty or all zero.
        """
        samples, features = self.samples, self.features
        if set(samples) != set(self.sample_metadata.index):
            raise InconsistentExperimentError(
                self.analysis,
                f"{len(samples)} samples in the counts but "
                f"{len(self.sample_metadata)} rows of sample metadata"
            )
        if set(features) != set(self.feature_metadata.index):
            raise InconsistentExperimentError(
                self.analysis,
                f"{len(features)} features in the counts but "
                f"{len(self.feature_metadata)} rows of feature metadata"
            )
        empty_keys = [f for f in features if not str(f).strip()]
        if empty_keys:
            raise InconsistentExperimentError(self.analysis, "empty feature keys present")
        if features:
            zero = feature_totals(self.table) <= 0
            if zero.any():
                raise InconsistentExperimentError(
                    self.analysis, f"{int(zero.sum())} features have no counts"
                )

    def __reduce__(self):
        # Pickled as a dense frame and rebuilt into a BIOM table on load
        return (
            _restore,
            (self.analysis, self.category, self.counts(),
             self.feature_metadata, self.sample_metadata)
        )

    def __repr__(self) -> str:
        n_features, n_samples = self.shape
        return (
            f"Experiment(analysis={self.analysis!r}, category={self.category!r}, "
            f"features={n_features}, samples={n_samples})"
        )


def _restore(analysis, category, counts, feature_metadata, sample_metadata) -> Experiment:
    return Experiment(
        analysis, category, df_to_biom(counts), feature_metadata, sample_metadata
    )
