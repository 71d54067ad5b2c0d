"""
Per-sample analysis bundles.

A bundle is a directory named after its sample::

    <bundle_dir>/<sample>/
        manifest.yaml
        genus.tsv
        kegg.tsv

`manifest.yaml` carries provenance, optional read statistics and the list of
analysis tables::

    run_type: shotgun
    pipeline: v2.1
    taxonomy_only: false
    read_stats: {assembled_gbp: 1.8, percent_assembled: 62.0}
    tables:
      genus: {file: genus.tsv, category: taxonomic}
      kegg:  {file: kegg.tsv, category: functional}

Every table is a TSV with a `feature` and a `count` column. Any other columns are
feature annotations; functional tables may carry a `taxon` column.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

# Third-Party Imports
import pandas as pd
import yaml

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.errors import BundleFormatError
from workflow_metagenomics.utils.progress import get_progress_bar, _format_task_desc

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class AnalysisTable:
    """One analysis output of one sample."""
    name: str
    category: str
    data: pd.DataFrame

    @property
    def annotation_columns(self) -> List[str]:
        return [
            c for c in self.data.columns
            if c not in (constants.FEATURE_COLUMN, constants.COUNT_COLUMN)
        ]


@dataclass(frozen=True)
class DataBundle:
    """Precomputed outputs for one sample, read-only once loaded."""
    name: str
    sample_id: str
    tables: Dict[str, AnalysisTable] = field(default_factory=dict)
    provenance: Dict[str, Any] = field(default_factory=dict)
    read_stats: Optional[Dict[str, float]] = None

    @property
    def taxonomy_only(self) -> bool:
        return bool(self.provenance.get("taxonomy_only", False))

# ==================================== FUNCTIONS ===================================== #

def _read_manifest(bundle_path: Path) -> Dict:
    manifest_path = bundle_path / constants.BUNDLE_MANIFEST
    if not manifest_path.exists():
        raise BundleFormatError(f"Missing {constants.BUNDLE_MANIFEST} in {bundle_path}")
    with open(manifest_path, "r") as file:
        manifest = yaml.safe_load(file) or {}
    if not isinstance(manifest, dict):
        raise BundleFormatError(f"Manifest is not a mapping: {manifest_path}")
    if not isinstance(manifest.get("tables", {}), dict):
        raise BundleFormatError(f"'tables' must be a mapping in {manifest_path}")
    return manifest


def _read_table(bundle_path: Path, name: str, spec: Dict) -> AnalysisTable:
    if isinstance(spec, str):
        spec = {"file": spec}
    category = spec.get("category", constants.CATEGORY_TAXONOMIC)
    if category not in constants.ANALYSIS_CATEGORIES:
        raise BundleFormatError(
            f"Table '{name}' in {bundle_path} has unknown category '{category}'"
        )
    table_path = bundle_path / spec.get("file", f"{name}.tsv")
    if not table_path.exists():
        raise BundleFormatError(f"Table file not found: {table_path}")

    df = pd.read_csv(table_path, sep="\t", dtype={constants.FEATURE_COLUMN: str})
    missing = [
        c for c in (constants.FEATURE_COLUMN, constants.COUNT_COLUMN) if c not in df.columns
    ]
    if missing:
        raise BundleFormatError(f"Table {table_path} is missing columns: {missing}")
    df[constants.FEATURE_COLUMN] = df[constants.FEATURE_COLUMN].fillna("").astype(str).str.strip()
    df[constants.COUNT_COLUMN] = pd.to_numeric(df[constants.COUNT_COLUMN], errors="coerce").fillna(0)
    return AnalysisTable(name=name, category=category, data=df)


def load_bundle(
    bundle_path: Union[str, Path],
    sample_filter: Optional[Set[str]] = None
) -> Optional[DataBundle]:
    """Load a single bundle directory.
    
    Args:
        bundle_path:   Directory containing `manifest.yaml` and the table files.
        sample_filter: If given, bundles of other samples are skipped before their
                       tables are read.
    
    Returns:
        The parsed DataBundle, or None if its sample was filtered out.
    
    Raises:
        BundleFormatError: If the manifest or a table is malformed.
    """
    bundle_path = Path(bundle_path)
    manifest = _read_manifest(bundle_path)
    sample_id = str(manifest.get("sample", bundle_path.name))
    if sample_filter is not None and sample_id not in sample_filter:
        return None
    tables = {
        str(name): _read_table(bundle_path, str(name), spec or {})
        for name, spec in (manifest.get("tables") or {}).items()
    }
    read_stats = manifest.get("read_stats")
    if read_stats is not None:
        read_stats = {k: float(v) for k, v in read_stats.items()}
    provenance = {
        k: v for k, v in manifest.items() if k not in ("tables", "read_stats", "sample")
    }
    return DataBundle(
        name=bundle_path.name,
        sample_id=sample_id,
        tables=tables,
        provenance=provenance,
        read_stats=read_stats,
    )


def find_bundle_paths(bundle_dir: Union[str, Path]) -> List[Path]:
    bundle_dir = Path(bundle_dir)
    if not bundle_dir.is_dir():
        raise FileNotFoundError(f"Bundle directory not found: {bundle_dir}")
    return sorted(
        p for p in bundle_dir.iterdir()
        if p.is_dir() and (p / constants.BUNDLE_MANIFEST).exists()
    )


def load_bundles(
    bundle_dir: Union[str, Path],
    sample_filter: Optional[Iterable[str]] = None,
    max_workers: int = constants.DEFAULT_LOAD_WORKERS
) -> Dict[str, DataBundle]:
    """Load every bundle under `bundle_dir`.
    
    Args:
        bundle_dir:    Directory with one subdirectory per sample.
        sample_filter: Only keep bundles of these sample IDs.
        max_workers:   Threads used to read bundles.
    
    Returns:
        Mapping of bundle name to DataBundle, sorted by name.
    
    Raises:
        FileNotFoundError: If `bundle_dir` does not exist or holds no bundles.
        BundleFormatError: If any bundle is malformed.
    """
    paths = find_bundle_paths(bundle_dir)
    wanted = set(map(str, sample_filter)) if sample_filter is not None else None
    if not paths:
        raise FileNotFoundError(f"No bundles found in {bundle_dir}")
    if len(paths) > constants.BUNDLE_WARNING_THRESHOLD:
        logger.warning(
            f"Loading {len(paths)} bundles; this may take a while and use a lot of memory"
        )

    bundles: Dict[str, DataBundle] = {}
    with get_progress_bar() as progress:
        task = progress.add_task(_format_task_desc("Loading bundles"), total=len(paths))
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            futures = {executor.submit(load_bundle, p, wanted): p for p in paths}
            for future in as_completed(futures):
                bundle = future.result()
                if bundle is not None:
                    bundles[bundle.name] = bundle
                progress.update(task, advance=1)

    logger.info(f"{'Loaded bundles:':<30}{len(bundles):>6}")
    return dict(sorted(bundles.items()))


def collect_read_stats(bundles: Dict[str, DataBundle]) -> Optional[pd.DataFrame]:
    """Read statistics of all bundles indexed by sample, or None if no bundle has any."""
    rows = {
        b.sample_id: b.read_stats for b in bundles.values() if b.read_stats is not None
    }
    if not rows:
        return None
    return pd.DataFrame.from_dict(rows, orient="index")
