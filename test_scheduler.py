"""
Tests for expanding report jobs and running them with failure isolation.
"""

import pickle

import pandas as pd
import pytest
from rich.progress import MofNCompleteColumn, TimeRemainingColumn

from workflow_metagenomics.config import ReportsConfig
from workflow_metagenomics.errors import JobFailure
from workflow_metagenomics.experiments.experiment import Experiment
from workflow_metagenomics.reports.jobs import RenderSettings, ReportJob, build_report_jobs
from workflow_metagenomics.reports.scheduler import (
    ReportScheduler, compute_degree, execute_job
)
from workflow_metagenomics.utils.biom import df_to_biom
from workflow_metagenomics.utils import resources
from workflow_metagenomics.utils.progress import _format_task_desc, get_progress_bar


def make_experiment(analysis="genus"):
    counts = pd.DataFrame(
        {"S1": [3.0, 1.0], "S2": [0.0, 4.0], "S3": [2.0, 2.0]}, index=["F1", "F2"]
    )
    return Experiment(
        analysis=analysis,
        category="taxonomic",
        table=df_to_biom(counts),
        feature_metadata=pd.DataFrame(index=["F1", "F2"]),
        sample_metadata=pd.DataFrame({"site": ["A", "B", "A"]}, index=["S1", "S2", "S3"]),
    )


def make_jobs(n):
    settings = RenderSettings()
    return [
        ReportJob(f"analysis{i}", "exploratory", make_experiment(f"analysis{i}"), settings)
        for i in range(1, n + 1)
    ]


def failing_renderer(job, output_dir):
    """Writes a marker file; the second analysis always fails."""
    if job.analysis == "analysis2":
        raise RuntimeError("renderer crashed")
    path = output_dir / "done.txt"
    path.write_text(job.name)
    return [path]

# ---------------------------------- Degree ------------------------------------ #

def test_degree_formula():
    assert compute_degree(8, 5, 0.4) == 3
    assert compute_degree(16, 3, 0.0) == 3
    assert compute_degree(10, 100, 0.5) == 4


def test_degree_is_at_least_one():
    assert compute_degree(2, 10, 0.0) == 1
    assert compute_degree(1, 10, 0.0) == 1
    assert compute_degree(8, 5, 0.99) == 1
    assert compute_degree(8, 5, 1.0) == 1


def test_scheduler_degree_uses_probe():
    scheduler = ReportScheduler(".", cpu_count=8, memory_probe=lambda: 0.4)
    assert scheduler.degree(5) == 3


def test_memory_probes_are_clamped(monkeypatch):
    class FakeMemory:
        percent = 40.0

    monkeypatch.setattr(resources.psutil, "virtual_memory", lambda: FakeMemory)
    assert resources.memory_used_fraction() == pytest.approx(0.4)
    assert resources.memory_available_fraction() == pytest.approx(0.6)

    FakeMemory.percent = 130.0
    assert resources.memory_used_fraction() == 1.0
    assert resources.available_cpu_count() >= 1


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        ReportScheduler(".", backend="gpu")

# ------------------------------------ Jobs ------------------------------------ #

def test_job_matrix_is_kind_major():
    reports = ReportsConfig(ordination=("pca", "pcoa"), comparative=True, alpha=True)
    experiments = {"genus": make_experiment("genus"), "kegg": make_experiment("kegg")}
    jobs = build_report_jobs(reports, experiments, RenderSettings())
    assert [job.name for job in jobs] == [
        "genus/ordination/pca", "genus/ordination/pcoa",
        "kegg/ordination/pca", "kegg/ordination/pcoa",
        "genus/comparative", "kegg/comparative",
        "genus/alpha", "kegg/alpha",
    ]
    assert jobs[0].subdir == "ordination_pca"
    assert jobs[4].subdir == "comparative"


def test_no_enabled_kinds_gives_no_jobs():
    jobs = build_report_jobs(ReportsConfig(), {"genus": make_experiment()}, RenderSettings())
    assert jobs == []

# ---------------------------------- Running ----------------------------------- #

def test_execute_job_returns_failure_instead_of_raising(tmp_path):
    job = make_jobs(2)[1]
    outcome = execute_job(job, tmp_path, failing_renderer)
    assert isinstance(outcome, JobFailure)
    assert outcome.job_name == "analysis2/exploratory"
    assert "renderer crashed" in outcome.cause


def test_job_failure_pickles():
    failure = pickle.loads(pickle.dumps(JobFailure("genus/alpha", "ValueError: boom")))
    assert (failure.job_name, failure.cause) == ("genus/alpha", "ValueError: boom")


@pytest.mark.parametrize("parallel", [False, True])
def test_one_failing_job_does_not_stop_the_others(tmp_path, parallel):
    scheduler = ReportScheduler(
        tmp_path, parallel=parallel, backend="thread", renderer=failing_renderer,
        cpu_count=8, memory_probe=lambda: 0.0,
    )
    jobs = make_jobs(4)
    result = scheduler.run(jobs)

    assert result.n_jobs == 4
    assert not result.ok
    assert [job.analysis for job in result.succeeded] == ["analysis1", "analysis3", "analysis4"]
    assert len(result.failures) == 1
    failed_job, failure = result.failures[0]
    assert failed_job is jobs[1]
    assert failure.job_name == "analysis2/exploratory"
    for analysis in ("analysis1", "analysis3", "analysis4"):
        assert (tmp_path / analysis / "exploratory" / "done.txt").exists()
    assert not (tmp_path / "analysis2" / "exploratory" / "done.txt").exists()


def test_empty_batch(tmp_path):
    result = ReportScheduler(tmp_path, backend="thread").run([])
    assert result.n_jobs == 0
    assert result.ok


def test_default_renderers_on_thread_pool(tmp_path):
    reports = ReportsConfig(
        ordination=("pca", "pcoa"), comparative=True, exploratory=True,
        presence_absence=True, alpha=True,
    )
    settings = RenderSettings(discrete=("site",), stratifiable=("site",))
    jobs = build_report_jobs(reports, {"genus": make_experiment()}, settings)
    result = ReportScheduler(
        tmp_path, backend="thread", cpu_count=4, memory_probe=lambda: 0.0
    ).run(jobs)

    assert result.ok, result.failures
    assert (tmp_path / "genus" / "ordination_pcoa" / "coordinates.tsv").exists()
    assert (tmp_path / "genus" / "exploratory" / "top_features.tsv").exists()
    alpha = pd.read_csv(tmp_path / "genus" / "alpha" / "alpha_diversity.tsv", sep="\t", index_col=0)
    assert alpha.loc["S2", "observed"] == 1
    assert alpha.loc["S2", "shannon"] == pytest.approx(0.0)


def test_default_renderers_on_process_pool(tmp_path):
    reports = ReportsConfig(correlation=True, exploratory=True, alpha=True)
    settings = RenderSettings(discrete=("site",))
    jobs = build_report_jobs(reports, {"genus": make_experiment()}, settings)
    result = ReportScheduler(
        tmp_path, backend="process", cpu_count=4, memory_probe=lambda: 0.0
    ).run(jobs)

    assert result.n_jobs == 3
    assert [job.name for job, _ in result.failures] == ["genus/correlation"]
    failure = result.failures[0][1]
    assert isinstance(failure, JobFailure)
    assert "No continuous variables" in failure.cause
    assert sorted(job.name for job in result.succeeded) == ["genus/alpha", "genus/exploratory"]
    assert (tmp_path / "genus" / "exploratory" / "top_features.tsv").exists()
    assert (tmp_path / "genus" / "alpha" / "alpha_diversity.tsv").exists()


def test_progress_bar_tracks_tasks():
    progress = get_progress_bar(transient=True)
    assert any(isinstance(c, MofNCompleteColumn) for c in progress.columns)
    assert any(isinstance(c, TimeRemainingColumn) for c in progress.columns)
    task = progress.add_task(_format_task_desc("Generating reports"), total=3)
    progress.update(task, advance=2)
    assert progress.tasks[0].completed == 2
    assert progress.tasks[0].description.startswith("[white]Generating reports")
