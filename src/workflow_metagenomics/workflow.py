# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import gc
import logging
from dataclasses import dataclass
from typing import Dict, Optional

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.checkpoint import load_checkpoint, save_checkpoint
from workflow_metagenomics.config import RunConfig
from workflow_metagenomics.context import RunContext, Stage
from workflow_metagenomics.experiments.builder import ExperimentBuilder
from workflow_metagenomics.io.bundles import DataBundle, collect_read_stats, load_bundles
from workflow_metagenomics.io.metadata import load_metadata
from workflow_metagenomics.io.tables import export_tables
from workflow_metagenomics.metadata.reconcile import MetadataReconciler, wanted_samples
from workflow_metagenomics.metadata.samples import exclude_duplicates, resolve_samples
from workflow_metagenomics.reports.jobs import RenderSettings, build_report_jobs
from workflow_metagenomics.reports.renderers import render_report
from workflow_metagenomics.reports.scheduler import BatchResult, Renderer, ReportScheduler
from workflow_metagenomics.utils.dir import ProjectDir
from workflow_metagenomics.utils.resources import process_memory_mb

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ===================================== CLASSES ====================================== #

@dataclass
class RunSummary:
    context: RunContext
    batch: BatchResult


class MetagenomicsWorkflow:
    """Drives a reporting run from bundles and metadata to report files.
    
    Stages, each returning a new RunContext:
        vet metadata → build experiments → export tables → generate reports
    
    A checkpoint is written after each of the first three. With `resume`, the run
    starts from the last checkpoint; with `replace_metadata` as well, experiments
    restored from it are re-fitted to freshly loaded metadata.
    """
    def __init__(
        self,
        config: RunConfig,
        project_dir: Optional[ProjectDir] = None,
        renderer: Renderer = render_report
    ):
        self.config = config
        self.project_dir = project_dir or ProjectDir(config.output_dir)
        self.renderer = renderer
        self.reconciler = MetadataReconciler.from_config(config)
        self.builder = ExperimentBuilder.from_config(config)

    def run(self) -> RunSummary:
        """Execute the complete reporting pipeline."""
        logger.info("Starting metagenomics reporting workflow...")
        try:
            context = self._start()
            if self.config.replace_metadata:
                if context.reached(Stage.EXPERIMENTS_BUILT):
                    context = self._replace_metadata(context)
                else:
                    context = RunContext(config=self.config)
            if not context.reached(Stage.METADATA_VETTED):
                context = self._vet_metadata(context)
            if not context.reached(Stage.EXPERIMENTS_BUILT):
                context = self._build_experiments(context)
            if not context.reached(Stage.TABLES_EXPORTED):
                context = self._export_tables(context)
            batch = self._generate_reports(context)
        except Exception as e:
            logger.error(f"Workflow failed: {e}")
            raise
        logger.info("Metagenomics reporting workflow completed")
        return RunSummary(context, batch)

    # ----------------------------------- Stages ----------------------------------- #

    def _start(self) -> RunContext:
        if self.config.resume:
            checkpoint = load_checkpoint(self.project_dir.checkpoint)
            if checkpoint is not None:
                return checkpoint.context.advance(config=self.config)
            logger.info("No checkpoint found; starting from the beginning")
        return RunContext(config=self.config)

    def _checkpoint(self, context: RunContext) -> RunContext:
        save_checkpoint(self.project_dir.checkpoint, context)
        return context

    def _load_metadata(self):
        return load_metadata(
            excel_path=self.config.metadata_excel,
            tsv_paths=self.config.metadata_tsv,
            labels_path=self.config.metadata_labels,
        )

    def _load_bundles(self, sample_filter=None) -> Dict[str, DataBundle]:
        """Bundles keyed by sample ID, duplicates excluded."""
        if self.config.bundle_dir is None:
            raise ValueError("Configuration is missing 'bundle_dir'")
        bundles = load_bundles(
            self.config.bundle_dir, sample_filter, max_workers=self.config.load_workers
        )
        kept = exclude_duplicates(bundles, self.config.duplicate_prefixes)
        by_sample: Dict[str, DataBundle] = {}
        for name in kept:
            bundle = bundles[name]
            if bundle.sample_id in by_sample:
                logger.warning(
                    f"Bundles '{by_sample[bundle.sample_id].name}' and '{name}' both hold "
                    f"sample '{bundle.sample_id}'; keeping the first"
                )
                continue
            by_sample[bundle.sample_id] = bundle
        return by_sample

    def _vet_metadata(self, context: RunContext) -> RunContext:
        logger.info("Vetting sample metadata...")
        phenotypes, labels = self._load_metadata()
        wanted = wanted_samples(phenotypes, labels)
        bundles = self._load_bundles(sample_filter=wanted)
        samples = resolve_samples(wanted, bundles)
        read_stats = collect_read_stats(bundles)
        metadata = self.reconciler.run(phenotypes, labels, samples.resolved, read_stats)
        context = context.advance(
            Stage.METADATA_VETTED,
            samples=samples, metadata=metadata, read_stats=read_stats, bundles=bundles,
        )
        return self._checkpoint(context)

    def _build_experiments(self, context: RunContext) -> RunContext:
        logger.info("Building experiments...")
        bundles = context.bundles
        if bundles is None:
            bundles = self._load_bundles(sample_filter=context.metadata.samples)
        experiments = self.builder.construct(bundles, context.metadata)
        context = context.advance(Stage.EXPERIMENTS_BUILT, experiments=experiments, bundles=None)
        del bundles
        gc.collect()
        logger.debug(f"Released bundles; process memory {process_memory_mb():.0f} MB")
        return self._checkpoint(context)

    def _replace_metadata(self, context: RunContext) -> RunContext:
        logger.info("Replacing metadata of existing experiments...")
        phenotypes, labels = self._load_metadata()
        available = list(dict.fromkeys(
            s for experiment in context.experiments.values() for s in experiment.samples
        ))
        samples = resolve_samples(wanted_samples(phenotypes, labels), available)
        metadata = self.reconciler.run(phenotypes, labels, samples.resolved, context.read_stats)
        experiments = self.builder.replace_metadata(context.experiments, metadata)
        context = context.advance(
            Stage.EXPERIMENTS_BUILT,
            samples=samples, metadata=metadata, experiments=experiments, exported=(),
        )
        return self._checkpoint(context)

    def _export_tables(self, context: RunContext) -> RunContext:
        exported = ()
        if self.config.export_tables:
            logger.info("Exporting tables...")
            exported = tuple(export_tables(
                context.experiments, self.config.export_normalized, self.project_dir.tables
            ))
        context = context.advance(Stage.TABLES_EXPORTED, exported=exported)
        return self._checkpoint(context)

    def _generate_reports(self, context: RunContext) -> BatchResult:
        reports = self.config.reports
        if not reports.enabled_kinds() or not context.experiments:
            logger.info("Skipping reports: none enabled or no experiments")
            return BatchResult()
        logger.info("Generating reports...")
        self.project_dir.create_report_dirs(context.experiments)
        settings = RenderSettings.build(context.metadata.classification, reports)
        jobs = build_report_jobs(reports, context.experiments, settings)
        scheduler = ReportScheduler(
            self.project_dir.reports,
            parallel=reports.parallel,
            backend=reports.backend,
            renderer=self.renderer,
        )
        return scheduler.run(jobs)


def run_workflow(config: RunConfig, project_dir: Optional[ProjectDir] = None) -> RunSummary:
    return MetagenomicsWorkflow(config, project_dir).run()
