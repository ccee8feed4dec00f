"""
Directory pipelines.

Each pipeline walks a data directory, assembles experiment metadata,
reconciles the results files it finds and stores everything through an
``ItemSink``.  Fatal errors are caught per document or file, logged and
recorded in ``PipelineResult.errors``; the next file is processed as usual.
Genes, proteins and cell lines are shared by the whole run and stored once,
at the end.

Expected layouts:

* RNA-seq: ``<data_dir>/<experiment>.json`` plus
  ``<data_dir>/<short name>/<treatment>_vs_<control>_DESeq2.tsv`` and
  ``<data_dir>/<short name>/salmon.merged.gene_counts.tsv``
* Proteomics: ``<data_dir>/<experiment>/out.mzTab`` and optionally
  ``msstats_comparisons.csv`` and ``<data_dir>/<experiment>.json``
* Matrix: a single DepMap/CCLE CSV file
"""

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

from .config import LoaderConfig
from .errors import OmicsLoaderError
from .resolution.entity_cache import EntityCache
from .resolution.gene_resolver import GeneIdentityResolver
from .resolution.id_resolver import IdResolverPort
from .resolution.metadata import ExperimentMetadataAssembler, load_metadata
from .resolution.model import Experiment, SkippedEntry
from .resolution.readers import read_mztab, read_table
from .resolution.reconciler import ReconcileReport, TabularReconciler
from .resolution.registry import NamedEntityRegistry

logger = logging.getLogger(__name__)


class PipelineResult:
    """Container for one pipeline run."""

    def __init__(self):
        self.experiments: List[Experiment] = []
        self.reports: List[ReconcileReport] = []
        self.skipped: List[SkippedEntry] = []
        self.records: Dict[str, int] = {}
        self.stored: int = 0
        self.gene_stats: Dict[str, int] = {}
        self.errors: List[str] = []

    def add_records(self, kind: str, count: int) -> None:
        self.records[kind] = self.records.get(kind, 0) + count

    def add_error(self, source: str, error: Exception) -> None:
        message = f"{source}: {error}"
        logger.error("Failed to process %s", message)
        self.errors.append(message)

    def get_stats(self) -> Dict[str, int]:
        stats = {
            "experiments": len(self.experiments),
            "files": len(self.reports),
            "skipped_entries": len(self.skipped),
            "stored_items": self.stored,
            "errors": len(self.errors),
        }
        for kind, count in self.records.items():
            stats[f"records_{kind}"] = count
        for name, count in self.gene_stats.items():
            stats[f"genes_{name}"] = count
        return stats


class _RunContext:
    """Run-scoped resolvers and entity caches shared by all documents."""

    def __init__(self, sink, config: LoaderConfig, port: Optional[IdResolverPort]):
        self.sink = sink
        self.config = config
        self._port = port
        self._resolvers: Dict[str, GeneIdentityResolver] = {}
        self.proteins: EntityCache = EntityCache("protein")
        self.cell_lines: EntityCache = EntityCache("cell line")
        self.result = PipelineResult()

    @property
    def port(self) -> IdResolverPort:
        if self._port is None:
            self._port = self.config.create_id_resolver()
        return self._port

    def gene_resolver(self, species: str) -> GeneIdentityResolver:
        """One resolver (and gene cache) per species for the whole run."""
        key = species.strip().lower()
        if key not in self._resolvers:
            self._resolvers[key] = GeneIdentityResolver(self.port, species=key)
        return self._resolvers[key]

    def reconciler(self, experiment: Optional[Experiment], species: str) -> TabularReconciler:
        return TabularReconciler(
            self.gene_resolver(species),
            experiment=experiment,
            proteins=self.proteins,
            cell_lines=self.cell_lines,
        )

    def store(self, kind: str, records: list, report: Optional[ReconcileReport] = None) -> None:
        for record in records:
            self.sink.store(record)
        self.result.stored += len(records)
        self.result.add_records(kind, len(records))
        if report is not None:
            self.result.reports.append(report)

    def flush(self, cache: EntityCache) -> None:
        for key, entity in cache.unstored():
            self.sink.store(entity)
            cache.mark_stored(key)
            self.result.stored += 1

    def finish(self) -> PipelineResult:
        self.flush(self.proteins)
        self.flush(self.cell_lines)
        for species, resolver in self._resolvers.items():
            self.result.stored += resolver.flush(self.sink)
            for name, count in resolver.stats.as_dict().items():
                self.result.gene_stats[name] = self.result.gene_stats.get(name, 0) + count
            logger.info("Gene resolution (%s): %s", species, resolver.stats.as_dict())
        return self.result


# =============================================================================
# RNA-seq
# =============================================================================


def run_rnaseq_pipeline(
    data_dir: Union[str, Path],
    sink,
    config: Optional[LoaderConfig] = None,
    port: Optional[IdResolverPort] = None,
) -> PipelineResult:
    """Load every RNA-seq experiment described by a JSON file in ``data_dir``.

    Args:
        data_dir: Directory with metadata JSON files and per-experiment
            results subdirectories
        sink: Where entities and records are stored
        config: Loader options (defaults if omitted)
        port: External identifier resolver (built from ``config`` if omitted)

    Returns:
        PipelineResult with counts, reports and errors
    """
    config = config or LoaderConfig()
    data_path = Path(data_dir)
    context = _RunContext(sink, config, port)
    result = context.result
    start_time = time.time()

    json_files = sorted(data_path.glob("*.json"))
    logger.info("Found %d metadata files in %s", len(json_files), data_path)

    for json_file in json_files:
        experiment = _assemble(json_file, context)
        if experiment is None:
            continue

        experiment_dir = data_path / experiment.short_name
        if not experiment_dir.is_dir():
            logger.warning("No results directory for experiment %s", experiment.short_name)
            continue

        try:
            reconciler = context.reconciler(experiment, experiment.species)
        except ValueError as exc:
            result.add_error(json_file.name, exc)
            continue

        for comparison in experiment.comparisons:
            deseq2_file = experiment_dir / config.deseq2_file_name(comparison)
            if not deseq2_file.exists():
                logger.info("Failed to find DESeq2 file: %s", deseq2_file.name)
                continue
            try:
                table = read_table(deseq2_file, delimiter="\t")
                records = reconciler.reconcile_deseq2(
                    table.header, table.rows, comparison, source=table.source
                )
            except OmicsLoaderError as exc:
                result.add_error(f"{experiment.short_name}/{deseq2_file.name}", exc)
                continue
            context.store("differential_expression", records, reconciler.last_report)

        counts_file = experiment_dir / config.counts_file
        if not counts_file.exists():
            logger.info("Failed to find counts file: %s", counts_file.name)
            continue
        try:
            table = read_table(counts_file, delimiter="\t")
            records = reconciler.reconcile_feature_counts(
                table.header, table.rows, source=table.source
            )
        except OmicsLoaderError as exc:
            result.add_error(f"{experiment.short_name}/{counts_file.name}", exc)
            continue
        context.store("feature_counts", records, reconciler.last_report)

    context.finish()
    _log_summary("RNA-seq", result, start_time)
    return result


# =============================================================================
# Proteomics
# =============================================================================


def run_proteomics_pipeline(
    data_dir: Union[str, Path],
    sink,
    config: Optional[LoaderConfig] = None,
    port: Optional[IdResolverPort] = None,
) -> PipelineResult:
    """Load protein abundances (mzTab) and comparisons (MSstats) per subdirectory.

    An experiment without a ``<name>.json`` metadata file next to its
    directory gets a bare experiment named after the directory.
    """
    config = config or LoaderConfig()
    data_path = Path(data_dir)
    context = _RunContext(sink, config, port)
    result = context.result
    start_time = time.time()

    for experiment_dir in sorted(d for d in data_path.iterdir() if d.is_dir()):
        mztab_file = experiment_dir / config.mztab_file
        if not mztab_file.exists():
            continue
        logger.info("Processing mzTab file in %s", experiment_dir.name)

        metadata_file = data_path / f"{experiment_dir.name}.json"
        if metadata_file.exists():
            experiment = _assemble(metadata_file, context)
            if experiment is None:
                continue
        else:
            experiment = Experiment(
                short_name=experiment_dir.name,
                species=config.species,
                registry=NamedEntityRegistry(),
            )
            sink.store(experiment)
            result.experiments.append(experiment)

        try:
            reconciler = context.reconciler(experiment, experiment.species)
        except ValueError as exc:
            result.add_error(experiment_dir.name, exc)
            continue

        try:
            records = reconciler.reconcile_mztab(read_mztab(mztab_file))
        except OmicsLoaderError as exc:
            result.add_error(f"{experiment_dir.name}/{mztab_file.name}", exc)
            continue

        context.flush(context.proteins)
        for sample in reconciler.extra_samples:
            sink.store(sample)
            result.stored += 1
        for group in reconciler.protein_groups:
            sink.store(group)
            result.stored += 1
        context.store("protein_abundance", records, reconciler.last_report)

        msstats_file = experiment_dir / config.msstats_file
        if not msstats_file.exists():
            continue
        logger.info("Processing MSstats file in %s", experiment_dir.name)
        try:
            table = read_table(msstats_file, delimiter=config.msstats_delimiter)
            records = reconciler.reconcile_msstats(table.header, table.rows, source=table.source)
        except OmicsLoaderError as exc:
            result.add_error(f"{experiment_dir.name}/{msstats_file.name}", exc)
            continue
        context.store("protein_comparison", records, reconciler.last_report)

    context.finish()
    _log_summary("proteomics", result, start_time)
    return result


# =============================================================================
# DepMap / CCLE matrices
# =============================================================================


def run_matrix_pipeline(
    input_file: Union[str, Path],
    sink,
    config: Optional[LoaderConfig] = None,
    port: Optional[IdResolverPort] = None,
) -> PipelineResult:
    """Load one DepMap/CCLE cell line x gene matrix."""
    config = config or LoaderConfig()
    input_path = Path(input_file)
    context = _RunContext(sink, config, port)
    result = context.result
    start_time = time.time()

    try:
        reconciler = context.reconciler(None, config.species)
        table = read_table(input_path, delimiter=config.matrix_delimiter)
        records = reconciler.reconcile_gene_matrix(
            table.header,
            table.rows,
            attribute=config.matrix_attribute,
            ids_are_primary=config.ids_are_primary,
            header_start=config.matrix_header_start,
            source=table.source,
        )
    except (OmicsLoaderError, ValueError) as exc:
        result.add_error(input_path.name, exc)
    else:
        context.flush(context.cell_lines)
        context.store("matrix_values", records, reconciler.last_report)

    context.finish()
    _log_summary("matrix", result, start_time)
    return result


# =============================================================================
# Helpers
# =============================================================================


def _assemble(json_file: Path, context: _RunContext) -> Optional[Experiment]:
    try:
        experiment = ExperimentMetadataAssembler(context.sink).assemble(load_metadata(json_file))
    except OmicsLoaderError as exc:
        context.result.add_error(json_file.name, exc)
        return None
    context.result.experiments.append(experiment)
    context.result.skipped.extend(experiment.skipped)
    return experiment


def _log_summary(name: str, result: PipelineResult, start_time: float) -> None:
    elapsed = time.time() - start_time
    logger.info("%s pipeline finished in %.1f s: %s", name, elapsed, result.get_stats())
    for error in result.errors:
        logger.warning("  %s", error)
