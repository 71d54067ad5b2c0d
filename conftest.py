"""
Shared builders for the test modules: small on-disk bundles and phenotype tables.
"""

from pathlib import Path

import pandas as pd
import pytest
import yaml

GENERA = ["Bacillus", "Escherichia", "Pseudomonas", "Streptomyces"]
KOS = ["K00001", "K00002", "K00003"]
SAMPLES = ["S1", "S2", "S3", "S4", "S5", "S6"]


def write_bundle(root, name, tables, sample=None, read_stats=None, taxonomy_only=False):
    """Write one bundle directory.

    `tables` maps an analysis name to (category, DataFrame with feature/count columns).
    """
    bundle_path = Path(root) / name
    bundle_path.mkdir(parents=True, exist_ok=True)
    manifest = {
        "run_type": "shotgun",
        "pipeline": "v2.1",
        "taxonomy_only": taxonomy_only,
        "tables": {},
    }
    if sample is not None:
        manifest["sample"] = sample
    if read_stats is not None:
        manifest["read_stats"] = read_stats
    for analysis, (category, df) in tables.items():
        df.to_csv(bundle_path / f"{analysis}.tsv", sep="\t", index=False)
        manifest["tables"][analysis] = {"file": f"{analysis}.tsv", "category": category}
    with open(bundle_path / "manifest.yaml", "w") as file:
        yaml.safe_dump(manifest, file)
    return bundle_path


def genus_table(i):
    return pd.DataFrame({
        "feature": GENERA,
        "count": [10 + i, 5 * (i % 3), 20 - i, 3 + 2 * i],
        "rank": ["genus"] * len(GENERA),
    })


def kegg_table(i):
    return pd.DataFrame({
        "feature": KOS + ["K00001"],
        "count": [4 + i, 7, 1 + (i % 2), 2],
        "taxon": ["Bacillus", "Escherichia", "", "Pseudomonas"],
    })


def create_test_data(root, samples=SAMPLES, taxonomy_only=False, read_stats=None):
    """Bundles with a taxonomic 'genus' and a functional 'kegg' analysis per sample."""
    bundle_dir = Path(root) / "bundles"
    for i, sample in enumerate(samples):
        tables = {"genus": ("taxonomic", genus_table(i))}
        if not taxonomy_only:
            tables["kegg"] = ("functional", kegg_table(i))
        stats = (read_stats or {}).get(sample)
        write_bundle(bundle_dir, sample, tables, read_stats=stats, taxonomy_only=taxonomy_only)
    return bundle_dir


def create_phenotypes(samples=SAMPLES):
    n = len(samples)
    return pd.DataFrame({
        "Sample": list(samples),
        "site": ["A", "B"] * (n // 2) + ["A"] * (n % 2),
        "ph": [5.5 + 0.4 * i for i in range(n)],
        "notes": ["x"] * n,
    })


def create_labels(kinds=None):
    kinds = kinds or {
        "Sample": "Sample",
        "site": "Discrete",
        "ph": "Continuous",
        "notes": "Ignore",
    }
    labels = pd.DataFrame({
        "label": [name.title() for name in kinds],
        "kind": list(kinds.values()),
    }, index=pd.Index(list(kinds), name="variable"))
    return labels


@pytest.fixture
def phenotypes():
    return create_phenotypes()


@pytest.fixture
def labels():
    return create_labels()


@pytest.fixture
def bundle_dir(tmp_path):
    return create_test_data(tmp_path)
