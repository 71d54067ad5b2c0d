"""
Tests for reading bundles, phenotype metadata and the YAML configuration.
"""

import pandas as pd
import pytest
import yaml

from conftest import SAMPLES, create_labels, create_phenotypes, genus_table, write_bundle
from workflow_metagenomics.config import ReportsConfig, RunConfig, get_config
from workflow_metagenomics.errors import BundleFormatError
from workflow_metagenomics.io.bundles import (
    collect_read_stats, find_bundle_paths, load_bundle, load_bundles
)
from workflow_metagenomics.io.metadata import (
    import_labels_tsv, import_merged_phenotypes_tsv, load_metadata
)

# ---------------------------------- Bundles ----------------------------------- #

def test_load_bundle_reads_tables_and_provenance(bundle_dir):
    bundle = load_bundle(bundle_dir / "S1")
    assert bundle.sample_id == "S1"
    assert set(bundle.tables) == {"genus", "kegg"}
    assert bundle.tables["genus"].category == "taxonomic"
    assert bundle.tables["kegg"].category == "functional"
    assert bundle.tables["genus"].annotation_columns == ["rank"]
    assert bundle.provenance["pipeline"] == "v2.1"
    assert not bundle.taxonomy_only
    assert bundle.read_stats is None


def test_manifest_sample_overrides_directory_name(tmp_path):
    write_bundle(tmp_path, "run_0042", {"genus": ("taxonomic", genus_table(0))}, sample="S1")
    bundle = load_bundle(tmp_path / "run_0042")
    assert bundle.name == "run_0042"
    assert bundle.sample_id == "S1"


def test_load_bundles_sorted_by_name(bundle_dir):
    bundles = load_bundles(bundle_dir, max_workers=2)
    assert list(bundles) == SAMPLES


def test_sample_filter_skips_other_bundles(bundle_dir):
    bundles = load_bundles(bundle_dir, sample_filter=["S2", "S5"])
    assert list(bundles) == ["S2", "S5"]
    assert load_bundle(bundle_dir / "S1", sample_filter={"S2"}) is None


def test_missing_manifest_is_skipped_by_discovery(bundle_dir):
    (bundle_dir / "not_a_bundle").mkdir()
    assert len(find_bundle_paths(bundle_dir)) == len(SAMPLES)


def test_empty_or_missing_bundle_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_bundles(tmp_path / "nowhere")
    (tmp_path / "empty").mkdir()
    with pytest.raises(FileNotFoundError):
        load_bundles(tmp_path / "empty")


def test_malformed_bundles_raise(tmp_path):
    bad_category = write_bundle(tmp_path, "S1", {"genus": ("viral", genus_table(0))})
    with pytest.raises(BundleFormatError, match="unknown category"):
        load_bundle(bad_category)

    no_count = write_bundle(
        tmp_path, "S2", {"genus": ("taxonomic", genus_table(0).drop(columns="count"))}
    )
    with pytest.raises(BundleFormatError, match="missing columns"):
        load_bundle(no_count)

    missing_file = write_bundle(tmp_path, "S3", {"genus": ("taxonomic", genus_table(0))})
    (missing_file / "genus.tsv").unlink()
    with pytest.raises(BundleFormatError, match="not found"):
        load_bundle(missing_file)


def test_collect_read_stats(tmp_path):
    write_bundle(tmp_path, "S1", {}, read_stats={"assembled_gbp": 2, "percent_assembled": 71})
    write_bundle(tmp_path, "S2", {})
    stats = collect_read_stats(load_bundles(tmp_path))
    assert stats.index.tolist() == ["S1"]
    assert stats.loc["S1", "assembled_gbp"] == 2.0

    write_bundle(tmp_path / "other", "S3", {})
    assert collect_read_stats(load_bundles(tmp_path / "other")) is None

# ---------------------------------- Metadata ---------------------------------- #

def test_merged_tsv_files_keep_values_as_written(tmp_path):
    phenotypes = create_phenotypes(["001", "002", "003", "004", "005", "006"])
    first, second = tmp_path / "a.tsv", tmp_path / "b.tsv"
    phenotypes.iloc[:3].to_csv(first, sep="\t", index=False)
    phenotypes.iloc[3:].drop(columns="notes").to_csv(second, sep="\t", index=False)

    merged = import_merged_phenotypes_tsv([first, second])
    assert merged["Sample"].tolist() == ["001", "002", "003", "004", "005", "006"]
    assert merged["ph"].tolist()[0] == "5.5"
    assert merged["notes"].isna().sum() == 3


def test_labels_tsv_is_indexed_by_variable(tmp_path):
    path = tmp_path / "phenolabels.tsv"
    create_labels().reset_index().to_csv(path, sep="\t", index=False)
    labels = import_labels_tsv(path)
    assert labels.index.tolist() == ["Sample", "site", "ph", "notes"]
    assert labels.columns.tolist() == ["label", "kind"]


def test_load_metadata_from_excel(tmp_path):
    path = tmp_path / "metadata.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        create_phenotypes().to_excel(writer, sheet_name="Phenotypes", index=False)
        create_labels().reset_index().to_excel(writer, sheet_name="phenolabels", index=False)

    phenotypes, labels = load_metadata(excel_path=path)
    assert phenotypes.shape == (6, 4)
    assert labels.loc["site", "kind"] == "Discrete"


def test_load_metadata_requires_a_source():
    with pytest.raises(ValueError):
        load_metadata()

# ----------------------------------- Config ----------------------------------- #

def test_get_config_resolves_relative_paths(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "output_dir": "./out",
        "bundle_dir": "../bundles",
        "metadata": {"tsv": ["./m1.tsv", "./m2.tsv"]},
        "reports": {"ordination": ["pca"], "alpha": True},
    }))
    config = RunConfig.from_dict(get_config(path))
    assert config.output_dir == (tmp_path / "out").resolve()
    assert config.bundle_dir == (tmp_path.parent / "bundles").resolve()
    assert config.metadata_tsv == ((tmp_path / "m1.tsv").resolve(), (tmp_path / "m2.tsv").resolve())
    assert config.reports.enabled_kinds() == ["ordination", "alpha"]


def test_run_config_validation():
    with pytest.raises(ValueError):
        RunConfig.from_dict({})
    with pytest.raises(ValueError):
        RunConfig.from_dict({
            "output_dir": "out", "max_discrete_classes": 3, "max_discrete_subclasses": 4,
        })
    with pytest.raises(ValueError):
        ReportsConfig.from_dict({"ordination": ["tsne"]})
    with pytest.raises(ValueError):
        ReportsConfig.from_dict({"backend": "gpu"})


def test_ordination_shorthands():
    assert ReportsConfig.from_dict({"ordination": True}).ordination == ("pcoa",)
    assert ReportsConfig.from_dict({"ordination": "PCA"}).ordination == ("pca",)
    assert ReportsConfig.from_dict({"ordination": False}).ordination == ()


def test_default_config_file_is_valid():
    config = RunConfig.from_dict(get_config())
    assert config.reports.backend == "process"
    assert config.max_discrete_classes == 15
