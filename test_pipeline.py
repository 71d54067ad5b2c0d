"""
End-to-end runs of the workflow and the command line entry point on temporary bundles.
"""

import shutil

import pytest
import yaml

import run
from conftest import (
    SAMPLES, create_labels, create_phenotypes, create_test_data, genus_table, write_bundle
)
from workflow_metagenomics.checkpoint import load_checkpoint
from workflow_metagenomics.config import ReportsConfig, RunConfig
from workflow_metagenomics.context import Stage
from workflow_metagenomics.errors import AmbiguousSampleColumnError
from workflow_metagenomics.workflow import MetagenomicsWorkflow

REPORT_SUBDIRS = {
    "ordination_pca", "ordination_pcoa", "comparative", "correlation",
    "exploratory", "presence_absence", "alpha",
}


def write_metadata(root, phenotypes=None, labels=None):
    phenotypes_path, labels_path = root / "metadata.tsv", root / "phenolabels.tsv"
    (phenotypes if phenotypes is not None else create_phenotypes()).to_csv(
        phenotypes_path, sep="\t", index=False
    )
    (labels if labels is not None else create_labels()).reset_index().to_csv(
        labels_path, sep="\t", index=False
    )
    return phenotypes_path, labels_path


def make_config(tmp_path, **overrides):
    phenotypes_path, labels_path = write_metadata(tmp_path)
    settings = dict(
        output_dir=tmp_path / "out",
        bundle_dir=tmp_path / "bundles",
        metadata_tsv=(phenotypes_path,),
        metadata_labels=labels_path,
        reports=ReportsConfig(
            ordination=("pca", "pcoa"), comparative=True, correlation=True,
            exploratory=True, presence_absence=True, alpha=True,
            parallel=True, backend="thread",
        ),
    )
    settings.update(overrides)
    return RunConfig(**settings)


@pytest.fixture
def config(tmp_path):
    create_test_data(tmp_path)
    return make_config(tmp_path)


def test_full_run(config):
    summary = MetagenomicsWorkflow(config).run()

    assert summary.batch.ok, summary.batch.failures
    assert summary.batch.n_jobs == 2 * len(REPORT_SUBDIRS)
    reports = config.output_dir / "Reports"
    for analysis in ("genus", "kegg"):
        assert {p.name for p in (reports / analysis).iterdir()} == REPORT_SUBDIRS
    assert (reports / "genus" / "comparative" / "site.kruskal.tsv").exists()
    assert (reports / "kegg" / "correlation" / "ph.spearman.tsv").exists()

    tables = sorted(p.name for p in (config.output_dir / "Tables").iterdir())
    assert tables == ["genus.xlsx", "kegg.xlsx"]

    checkpoint = load_checkpoint(config.output_dir / "checkpoint.pkl")
    assert checkpoint.stage == Stage.TABLES_EXPORTED
    assert checkpoint.context.metadata.samples == SAMPLES


def test_resume_skips_finished_stages(config, tmp_path):
    MetagenomicsWorkflow(config).run()
    shutil.rmtree(tmp_path / "bundles")

    resumed = MetagenomicsWorkflow(make_config(tmp_path, resume=True)).run()
    assert resumed.batch.ok
    assert list(resumed.context.experiments) == ["genus", "kegg"]


def test_resume_with_replaced_metadata(config, tmp_path):
    MetagenomicsWorkflow(config).run()
    shutil.rmtree(tmp_path / "bundles")

    phenotypes = create_phenotypes()
    phenotypes["site"] = ["X", "Y", "X", "Y", "X", "Y"]
    write_metadata(tmp_path, phenotypes.iloc[:4])

    summary = MetagenomicsWorkflow(
        make_config(tmp_path, resume=True, replace_metadata=True)
    ).run()
    genus = summary.context.experiments["genus"]
    assert genus.samples == ["S1", "S2", "S3", "S4"]
    assert genus.sample_metadata["site"].tolist() == ["X", "Y", "X", "Y"]
    assert summary.context.stage == Stage.TABLES_EXPORTED


def test_insufficient_samples_are_left_out(tmp_path):
    stats = {s: {"assembled_gbp": 2.0, "percent_assembled": 70.0} for s in SAMPLES}
    stats["S6"] = {"assembled_gbp": 0.2, "percent_assembled": 70.0}
    create_test_data(tmp_path, read_stats=stats)
    config = make_config(
        tmp_path, min_assembled_gbp=1.0, export_tables=False,
        reports=ReportsConfig(exploratory=True, parallel=False),
    )
    summary = MetagenomicsWorkflow(config).run()
    assert summary.context.experiments["genus"].samples == SAMPLES[:5]
    assert summary.context.metadata.insufficient == ("S6",)
    assert not (config.output_dir / "Tables").exists()


def test_duplicate_bundles_are_excluded(tmp_path):
    create_test_data(tmp_path)
    duplicate = genus_table(0)
    duplicate["count"] = [999, 999, 999, 999]
    write_bundle(tmp_path / "bundles", "DUP_S1", {"genus": ("taxonomic", duplicate)}, sample="S1")
    config = make_config(
        tmp_path, duplicate_prefixes=("DUP_",), reports=ReportsConfig(),
    )
    summary = MetagenomicsWorkflow(config).run()
    genus = summary.context.experiments["genus"]
    assert genus.samples == SAMPLES
    assert genus.counts().loc["Bacillus", "S1"] == 10
    assert summary.batch.n_jobs == 0


def test_numeric_variables_are_correlated_without_phenolabels(tmp_path):
    create_test_data(tmp_path)
    config = make_config(
        tmp_path, metadata_labels=None,
        reports=ReportsConfig(correlation=True, parallel=False),
    )
    summary = MetagenomicsWorkflow(config).run()
    classification = summary.context.metadata.classification
    assert "ph" in classification.continuous
    assert "ph" in classification.discrete
    assert summary.batch.ok, summary.batch.failures
    assert (config.output_dir / "Reports" / "genus" / "correlation" / "ph.spearman.tsv").exists()


def test_zero_padded_sample_ids_match_their_bundles(tmp_path):
    samples = ["001", "002", "003", "004"]
    create_test_data(tmp_path, samples=samples)
    config = make_config(tmp_path, reports=ReportsConfig(exploratory=True, parallel=False))
    write_metadata(tmp_path, create_phenotypes(samples))

    summary = MetagenomicsWorkflow(config).run()
    assert summary.context.metadata.samples == samples
    assert summary.context.experiments["genus"].samples == samples
    assert summary.batch.ok, summary.batch.failures


def test_metadata_errors_stop_the_run(tmp_path):
    create_test_data(tmp_path)
    config = make_config(tmp_path)
    write_metadata(tmp_path, labels=create_labels({"Sample": "Sample", "site": "Sample"}))
    with pytest.raises(AmbiguousSampleColumnError):
        MetagenomicsWorkflow(config).run()
    assert not (config.output_dir / "Reports").exists()

# ------------------------------------- CLI ------------------------------------ #

def write_config(tmp_path, **extra):
    phenotypes_path, labels_path = write_metadata(tmp_path)
    config = {
        "output_dir": "./out",
        "bundle_dir": "./bundles",
        "metadata": {"tsv": ["./metadata.tsv"], "labels": "./phenolabels.tsv"},
        "reports": {"exploratory": True, "backend": "thread"},
    }
    config.update(extra)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    return path


def test_cli_success(tmp_path):
    create_test_data(tmp_path)
    path = write_config(tmp_path)
    assert run.main(["--config", str(path), "--alpha", "--sequential"]) == 0
    assert (tmp_path / "out" / "Reports" / "genus" / "alpha").is_dir()
    assert (tmp_path / "out" / "Reports" / "genus" / "exploratory").is_dir()
    assert list((tmp_path / "out" / "logs").glob("*.log"))


def test_cli_fatal_error_exits_nonzero(tmp_path):
    create_test_data(tmp_path)
    path = write_config(tmp_path)
    write_metadata(tmp_path, labels=create_labels({"site": "Discrete"}))
    assert run.main(["--config", str(path)]) == 1


def test_cli_flags_override_config(tmp_path):
    path = write_config(tmp_path)
    args = run.build_parser().parse_args([
        "--config", str(path), "--ordination", "pca", "--no-alpha",
        "--backend", "thread", "--analyses", "genus", "--min-assembled-gbp", "1.5",
    ])
    config = RunConfig.from_dict(run.merge_args(run.get_config(path), args))
    assert config.reports.ordination == ("pca",)
    assert config.reports.alpha is False
    assert config.reports.exploratory is True
    assert config.analyses == ("genus",)
    assert config.min_assembled_gbp == 1.5
    assert config.output_dir == (tmp_path / "out").resolve()
