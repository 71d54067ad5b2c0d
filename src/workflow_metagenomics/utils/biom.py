# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Union

# Third-Party Imports
import numpy as np
import pandas as pd
from biom.table import Table

# Local Imports
from workflow_metagenomics.constants import LOGGER_NAME

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def df_to_biom(table: Union[pd.DataFrame, Table]) -> Table:
    """Convert a features × samples DataFrame to a BIOM Table.
    
    Args:
        table: Feature counts, features as rows and samples as columns.
    
    Returns:
        BIOM Table representation of the DataFrame.
    """
    if isinstance(table, Table):
        return table
        
    return Table(
        data=table.values,
        observation_ids=table.index.astype(str).tolist(),
        sample_ids=table.columns.astype(str).tolist(),
        type="OTU table"
    )


def table_to_df(table: Union[pd.DataFrame, Table]) -> pd.DataFrame:
    """Return a dense features × samples DataFrame."""
    if isinstance(table, pd.DataFrame):
        return table
    if table.is_empty():
        return pd.DataFrame(
            index=pd.Index(table.ids(axis='observation'), dtype=str),
            columns=pd.Index(table.ids(axis='sample'), dtype=str),
            dtype=float
        )
    return table.to_dataframe(dense=True)


def feature_totals(table: Table) -> pd.Series:
    """Total count of every feature across all samples."""
    return pd.Series(
        np.asarray(table.sum(axis='observation')).ravel(),
        index=table.ids(axis='observation')
    )


def relative_abundance(table: Union[pd.DataFrame, Table]) -> pd.DataFrame:
    """Scale each sample (column) to proportions; empty samples stay at zero."""
    df = table_to_df(table)
    totals = df.sum(axis=0).replace(0, np.nan)
    return df.div(totals, axis=1).fillna(0.0)
