"""
Exceptions raised by the reporting workflow.

Everything deriving from `MetadataError` is fatal and detected while the sample
metadata is being vetted, before any experiment is built. `JobFailure` is local to
one report job and is collected by the scheduler instead of being propagated.
"""
# ===================================== IMPORTS ====================================== #

from typing import Iterable, List, Optional

# ===================================== CLASSES ====================================== #

class WorkflowError(Exception):
    """Base class for all errors raised by the workflow."""


class MetadataError(WorkflowError):
    """Base class for fatal sample metadata validation errors."""


class SchemaError(MetadataError):
    """The phenolabels table is malformed."""

    def __init__(self, message: str, columns: Optional[Iterable[str]] = None):
        self.columns: List[str] = list(columns or [])
        super().__init__(message)


class AmbiguousSampleColumnError(MetadataError):
    """Zero or more than one sample identifier column was found."""

    def __init__(self, candidates: Iterable[str]):
        self.candidates: List[str] = list(candidates)
        if not self.candidates:
            message = "No sample identifier column found in the metadata"
        else:
            message = (
                f"Expected exactly one sample identifier column, found "
                f"{len(self.candidates)}: {self.candidates}"
            )
        super().__init__(message)


class MissingColumnError(MetadataError):
    """Variables declared in the phenolabels are absent from the phenotype table."""

    def __init__(self, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        super().__init__(
            f"Variables declared in phenolabels are missing from the metadata: "
            f"{self.missing}"
        )


class InconsistentSchemaError(MetadataError):
    """The phenolabels declare more variables than the phenotype table has."""

    def __init__(self, n_declared: int, n_columns: int):
        self.n_declared = n_declared
        self.n_columns = n_columns
        super().__init__(
            f"Phenolabels declare {n_declared} variables but the metadata only has "
            f"{n_columns} columns"
        )


class EmptyMetadataError(MetadataError):
    """No metadata rows survived a filtering step."""

    def __init__(self, step: str):
        self.step = step
        super().__init__(f"No samples left in the metadata after {step}")


class EmptySampleSetError(WorkflowError):
    """No samples are shared between an experiment and the metadata."""

    def __init__(self, analysis: str):
        self.analysis = analysis
        super().__init__(
            f"No samples shared between the '{analysis}' data and the metadata"
        )


class InconsistentExperimentError(WorkflowError):
    """Counts, feature metadata and sample metadata disagree."""

    def __init__(self, analysis: str, detail: str):
        self.analysis = analysis
        super().__init__(f"Experiment '{analysis}' is inconsistent: {detail}")


class BundleFormatError(WorkflowError):
    """A data bundle could not be parsed."""


class JobFailure(WorkflowError):
    """One report job failed; siblings keep running."""

    def __init__(self, job_name: str, cause: str):
        self.job_name = job_name
        self.cause = cause
        super().__init__(f"Report job '{job_name}' failed: {cause}")

    def __reduce__(self):
        return (self.__class__, (self.job_name, self.cause))
