"""
Default report renderers, one per report kind.

Each renderer takes a ReportJob and the job's own output directory, writes one or
more TSV files there and returns their paths. Any exception marks the job as
failed; the scheduler records it and carries on with the other jobs.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from pathlib import Path
from typing import Callable, Dict, List

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from scipy.stats import kruskal, spearmanr
from skbio import DistanceMatrix
from skbio.stats.ordination import pcoa
from sklearn.decomposition import PCA
from statsmodels.stats.multitest import multipletests

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.reports.jobs import ReportJob
from workflow_metagenomics.utils.biom import relative_abundance

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

N_ORDINATION_AXES = 3
ALPHA_METRICS = ("observed", "shannon", "simpson")

# =============================== HELPER FUNCTIONS =================================== #

def _write(df: pd.DataFrame, path: Path, index: bool = True) -> Path:
    df.to_csv(path, sep="\t", index=index)
    return path


def _abundances(job: ReportJob) -> pd.DataFrame:
    """Relative abundances as samples × features."""
    return relative_abundance(job.experiment.table).T


def _adjust(p_values: pd.Series) -> pd.Series:
    """Benjamini-Hochberg q-values; NaN p-values stay NaN."""
    q_values = pd.Series(np.nan, index=p_values.index)
    valid = p_values.notna()
    if valid.any():
        q_values[valid] = multipletests(p_values[valid].values, method="fdr_bh")[1]
    return q_values


def _usable_discrete(job: ReportJob) -> List[str]:
    metadata = job.experiment.sample_metadata
    return [
        v for v in job.settings.discrete
        if v in metadata.columns and metadata[v].dropna().nunique() >= 2
    ]


def _groups(metadata: pd.DataFrame, variable: str) -> Dict[str, pd.Index]:
    labels = metadata[variable].dropna().astype(str).str.strip()
    return {label: idx.index for label, idx in labels.groupby(labels)}

# ==================================== RENDERERS ===================================== #

def render_ordination(job: ReportJob, output_dir: Path) -> List[Path]:
    """Sample coordinates on the first axes of a PCA or Bray-Curtis PCoA."""
    abundances = _abundances(job)
    n_samples, n_features = abundances.shape
    if n_samples < 3:
        raise ValueError(f"Ordination needs at least 3 samples, got {n_samples}")
    n_axes = min(N_ORDINATION_AXES, n_samples, n_features)
    if n_axes < 1:
        raise ValueError("Ordination needs at least one feature")

    if job.method == "pca":
        model = PCA(n_components=n_axes)
        coordinates = model.fit_transform(abundances.values)
        explained = model.explained_variance_ratio_
    elif job.method == "pcoa":
        distances = squareform(pdist(abundances.values, metric="braycurtis"))
        if not np.isfinite(distances).all():
            raise ValueError("Bray-Curtis distances are undefined for empty samples")
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            result = pcoa(DistanceMatrix(distances, ids=abundances.index.astype(str).tolist()))
        coordinates = result.samples.iloc[:, :n_axes].values
        explained = result.proportion_explained.iloc[:n_axes].values
    else:
        raise ValueError(f"Unknown ordination method: {job.method}")

    axes = [f"PC{i + 1}" for i in range(coordinates.shape[1])]
    frame = pd.DataFrame(coordinates, index=abundances.index, columns=axes)
    metadata = job.experiment.sample_metadata
    for variable in job.settings.discrete:
        if variable in metadata.columns:
            labels = metadata[variable].reindex(frame.index).astype(str).str.strip()
            frame[variable] = labels
            palette = job.settings.colors.get(variable, {})
            frame[f"{variable}_color"] = labels.map(palette)
    variance = pd.DataFrame({"axis": axes, "proportion_explained": explained[:len(axes)]})
    return [
        _write(frame, output_dir / "coordinates.tsv"),
        _write(variance, output_dir / "proportion_explained.tsv", index=False),
    ]


def render_comparative(job: ReportJob, output_dir: Path) -> List[Path]:
    """Kruskal-Wallis test of every feature across the classes of each discrete variable."""
    variables = _usable_discrete(job)
    if not variables:
        raise ValueError("No discrete variable with at least two classes")
    abundances = _abundances(job)
    metadata = job.experiment.sample_metadata

    written = []
    for variable in variables:
        groups = _groups(metadata, variable)
        rows = []
        for feature in abundances.columns:
            samples = [abundances.loc[idx, feature].values for idx in groups.values()]
            samples = [s for s in samples if len(s) > 0]
            if len(samples) < 2:
                continue
            try:
                h_stat, p_value = kruskal(*samples)
            except ValueError:
                continue  # All values identical
            rows.append({"feature": feature, "h_statistic": h_stat, "p_value": p_value})

        results = pd.DataFrame(rows, columns=["feature", "h_statistic", "p_value"])
        results["q_value"] = _adjust(results["p_value"])
        results["significant"] = results["q_value"] <= job.settings.p_value_threshold
        results = results.sort_values("p_value", na_position="last")
        written.append(_write(results, output_dir / f"{variable}.kruskal.tsv", index=False))
    return written


def render_correlation(job: ReportJob, output_dir: Path) -> List[Path]:
    """Spearman correlation of every feature with each continuous variable."""
    metadata = job.experiment.sample_metadata
    variables = [v for v in job.settings.continuous if v in metadata.columns]
    if not variables:
        raise ValueError("No continuous variables to correlate with")
    abundances = _abundances(job)

    written = []
    for variable in variables:
        values = pd.to_numeric(metadata[variable], errors="coerce").reindex(abundances.index)
        keep = values.notna()
        if keep.sum() < 3:
            logger.warning(f"Skipping correlation with '{variable}': fewer than 3 values")
            continue
        rows = []
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            for feature in abundances.columns:
                rho, p_value = spearmanr(abundances.loc[keep, feature], values[keep])
                rows.append({"feature": feature, "rho": rho, "p_value": p_value})
        results = pd.DataFrame(rows, columns=["feature", "rho", "p_value"])
        results["q_value"] = _adjust(results["p_value"])
        results = results.sort_values("p_value", na_position="last")
        written.append(_write(results, output_dir / f"{variable}.spearman.tsv", index=False))
    if not written:
        raise ValueError("No continuous variable had enough values")
    return written


def render_exploratory(job: ReportJob, output_dir: Path) -> List[Path]:
    """Most abundant features and per-sample totals."""
    counts = job.experiment.counts()
    abundances = _abundances(job)
    top = pd.DataFrame({
        "mean_relative_abundance": abundances.mean(axis=0),
        "prevalence": (counts > 0).mean(axis=1),
    })
    top = top.sort_values("mean_relative_abundance", ascending=False)
    top = top.head(job.settings.top_n_features)
    top = top.join(job.experiment.feature_metadata, how="left")
    top.index.name = constants.FEATURE_COLUMN

    summary = pd.DataFrame({
        "total_count": counts.sum(axis=0),
        "observed_features": (counts > 0).sum(axis=0),
    })
    summary.index.name = "sample"
    return [
        _write(top, output_dir / "top_features.tsv"),
        _write(summary, output_dir / "sample_summary.tsv"),
    ]


def render_presence_absence(job: ReportJob, output_dir: Path) -> List[Path]:
    """Fraction of samples in which each feature occurs, overall and per class."""
    present = job.experiment.counts() > 0
    metadata = job.experiment.sample_metadata
    prevalence = pd.DataFrame({"all": present.mean(axis=1)})
    for variable in _usable_discrete(job):
        for label, samples in _groups(metadata, variable).items():
            prevalence[f"{variable}={label}"] = present.loc[:, samples].mean(axis=1)
    prevalence.index.name = constants.FEATURE_COLUMN
    return [_write(prevalence, output_dir / "prevalence.tsv")]


def alpha_diversity(counts: pd.DataFrame) -> pd.DataFrame:
    """Observed features, Shannon and Simpson indices per sample.
    
    Args:
        counts: Features × samples counts.
    
    Returns:
        Samples × metrics DataFrame.
    """
    totals = counts.sum(axis=0)
    proportions = counts.div(totals.replace(0, np.nan), axis=1).fillna(0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        log_p = np.where(proportions > 0, np.log(proportions), 0.0)
    return pd.DataFrame({
        "observed": (counts > 0).sum(axis=0),
        "shannon": -(proportions * log_p).sum(axis=0),
        "simpson": 1.0 - (proportions ** 2).sum(axis=0),
    })


def render_alpha(job: ReportJob, output_dir: Path) -> List[Path]:
    """Alpha diversity per sample plus a Kruskal-Wallis test per discrete variable."""
    alpha = alpha_diversity(job.experiment.counts())
    alpha.index.name = "sample"
    written = [_write(alpha, output_dir / "alpha_diversity.tsv")]

    metadata = job.experiment.sample_metadata
    rows = []
    for variable in _usable_discrete(job):
        groups = [alpha.loc[idx] for idx in _groups(metadata, variable).values()]
        for metric in ALPHA_METRICS:
            try:
                h_stat, p_value = kruskal(*(g[metric].values for g in groups))
            except ValueError:
                h_stat, p_value = np.nan, np.nan
            rows.append({
                "variable": variable, "metric": metric,
                "h_statistic": h_stat, "p_value": p_value,
            })
    if rows:
        tests = pd.DataFrame(rows)
        tests["q_value"] = _adjust(tests["p_value"])
        written.append(_write(tests, output_dir / "alpha_tests.tsv", index=False))
    return written


RENDERERS: Dict[str, Callable[[ReportJob, Path], List[Path]]] = {
    constants.REPORT_ORDINATION: render_ordination,
    constants.REPORT_COMPARATIVE: render_comparative,
    constants.REPORT_CORRELATION: render_correlation,
    constants.REPORT_EXPLORATORY: render_exploratory,
    constants.REPORT_PRESENCE_ABSENCE: render_presence_absence,
    constants.REPORT_ALPHA: render_alpha,
}


def render_report(job: ReportJob, output_dir: Path) -> List[Path]:
    """Dispatch `job` to the renderer of its report kind."""
    try:
        renderer = RENDERERS[job.kind]
    except KeyError:
        raise ValueError(f"No renderer for report kind '{job.kind}'") from None
    return renderer(job, Path(output_dir))
