"""
Bounded-concurrency execution of report jobs.

The number of workers shrinks with memory pressure:

    degree = max(1, round(min(cpus - 2, jobs) * (1 - used_memory_fraction)))

This is a heuristic throttle, not a memory quota. Jobs never share mutable state,
so no locking is needed; a failed job is recorded and its siblings keep running.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import time
import traceback
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.errors import JobFailure
from workflow_metagenomics.reports.jobs import ReportJob
from workflow_metagenomics.reports.renderers import render_report
from workflow_metagenomics.utils.progress import get_progress_bar, _format_task_desc
from workflow_metagenomics.utils.resources import available_cpu_count, memory_used_fraction

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

Renderer = Callable[[ReportJob, Path], Optional[List[Path]]]

# ===================================== CLASSES ====================================== #

@dataclass
class BatchResult:
    """Outcome of a batch: jobs that succeeded and (job, failure) pairs."""
    succeeded: List[ReportJob] = field(default_factory=list)
    failures: List[Tuple[ReportJob, JobFailure]] = field(default_factory=list)
    outputs: Dict[str, List[Path]] = field(default_factory=dict)

    @property
    def n_jobs(self) -> int:
        return len(self.succeeded) + len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def log_summary(self) -> None:
        logger.info(f"{len(self.succeeded)} of {self.n_jobs} report jobs succeeded")
        for job, failure in self.failures:
            logger.error(f"  ✗ {job.name}: {failure.cause}")

# ==================================== FUNCTIONS ===================================== #

def compute_degree(
    n_cpus: int,
    n_jobs: int,
    used_memory_fraction: float,
    reserved_cpus: int = constants.RESERVED_CPUS
) -> int:
    """Number of workers to run `n_jobs` jobs with.
    
    Args:
        n_cpus:               CPUs available to the process.
        n_jobs:               Jobs in the batch.
        used_memory_fraction: System memory in use, in [0, 1].
        reserved_cpus:        CPUs left for the controlling process.
    
    Returns:
        round(min(n_cpus - reserved_cpus, n_jobs) * (1 - used_memory_fraction)),
        never less than 1.
    """
    used = min(1.0, max(0.0, float(used_memory_fraction)))
    return max(1, round(min(n_cpus - reserved_cpus, n_jobs) * (1.0 - used)))


def execute_job(
    job: ReportJob,
    output_dir: Union[str, Path],
    renderer: Renderer = render_report
) -> Union[List[Path], JobFailure]:
    """Run one job in its own directory; failures are returned, never raised."""
    job_dir = Path(output_dir) / job.analysis / job.subdir
    try:
        job_dir.mkdir(parents=True, exist_ok=True)
        return list(renderer(job, job_dir) or [])
    except Exception as e:
        logger.debug(f"Report job {job.name} failed:\n{traceback.format_exc()}")
        return JobFailure(job.name, f"{type(e).__name__}: {e}")

# ===================================== CLASSES ====================================== #

class ReportScheduler:
    """Runs report jobs one after another or on a bounded worker pool.
    
    Args:
        output_dir:   The `Reports/` directory; jobs write below
                      `<output_dir>/<analysis>/<kind>`.
        parallel:     Use a worker pool instead of running jobs in list order.
        backend:      'process' for OS processes, 'thread' for threads.
        renderer:     Callable producing a job's files; must be picklable for the
                      process backend.
        cpu_count:    Overrides the detected CPU count.
        memory_probe: Returns the fraction of memory in use.
    """
    def __init__(
        self,
        output_dir: Union[str, Path],
        parallel: bool = True,
        backend: str = "process",
        renderer: Renderer = render_report,
        cpu_count: Optional[int] = None,
        memory_probe: Callable[[], float] = memory_used_fraction
    ):
        if backend not in constants.POOL_BACKENDS:
            raise ValueError(
                f"Invalid backend: {backend}. Must be one of {list(constants.POOL_BACKENDS)}"
            )
        self.output_dir = Path(output_dir)
        self.parallel = parallel
        self.backend = backend
        self.renderer = renderer
        self.cpu_count = cpu_count
        self.memory_probe = memory_probe

    def degree(self, n_jobs: int) -> int:
        n_cpus = self.cpu_count if self.cpu_count is not None else available_cpu_count()
        return compute_degree(n_cpus, n_jobs, self.memory_probe())

    def run(self, jobs: Sequence[ReportJob]) -> BatchResult:
        """Run every job to completion and collect the failures."""
        jobs = list(jobs)
        result = BatchResult()
        if not jobs:
            logger.info("No report jobs to run")
            return result

        start_time = time.perf_counter()
        if self.parallel:
            outcomes = self._run_parallel(jobs)
        else:
            outcomes = self._run_sequential(jobs)

        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, JobFailure):
                result.failures.append((job, outcome))
            else:
                result.succeeded.append(job)
                result.outputs[job.name] = outcome

        duration = time.perf_counter() - start_time
        logger.debug(f"Ran {len(jobs)} report jobs in {duration:.2f}s")
        result.log_summary()
        return result

    def _run_sequential(self, jobs: List[ReportJob]) -> List[Union[List[Path], JobFailure]]:
        outcomes = []
        with get_progress_bar() as progress:
            task = progress.add_task(_format_task_desc("Generating reports"), total=len(jobs))
            for job in jobs:
                progress.update(task, description=_format_task_desc(f"Generating {job.name}"))
                outcomes.append(execute_job(job, self.output_dir, self.renderer))
                progress.update(task, advance=1)
            progress.update(task, description=_format_task_desc("Generating reports"))
        return outcomes

    def _run_parallel(self, jobs: List[ReportJob]) -> List[Union[List[Path], JobFailure]]:
        max_workers = self.degree(len(jobs))
        logger.info(f"Running {len(jobs)} report jobs on {max_workers} {self.backend} workers")
        executor_class = ProcessPoolExecutor if self.backend == "process" else ThreadPoolExecutor

        outcomes: List[Union[List[Path], JobFailure, None]] = [None] * len(jobs)
        with get_progress_bar() as progress:
            task = progress.add_task(_format_task_desc("Generating reports"), total=len(jobs))
            with executor_class(max_workers=max_workers) as executor:
                future_to_index = {
                    executor.submit(execute_job, job, self.output_dir, self.renderer): i
                    for i, job in enumerate(jobs)
                }
                for future in as_completed(future_to_index):
                    i = future_to_index[future]
                    try:
                        outcomes[i] = future.result()
                    except Exception as e:  # Worker died or job could not be pickled
                        outcomes[i] = JobFailure(jobs[i].name, f"{type(e).__name__}: {e}")
                    progress.update(task, advance=1)
        return outcomes
