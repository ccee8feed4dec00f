"""Reconcile results tables against the gene resolver and the experiment registry.

Every ``reconcile_*`` method takes the raw header and rows of one file and
returns typed records.  Fatal problems (unknown header layout, malformed
rows, duplicate protein groups) raise; per-row problems (unresolvable gene,
unknown condition or sample) drop the row and are counted in the
``ReconcileReport`` kept as ``last_report``.

Numeric cells follow the same rules everywhere:

* ``NA``, ``null`` and empty cells are omitted (attribute left unset);
* non-numeric cells are omitted and logged at debug level;
* zero is omitted for counts and abundances only, never for statistics.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import DataIntegrityError, TableFormatError
from .entity_cache import EntityCache
from .gene_resolver import GeneIdentityResolver, is_valid_identifier, strip_version
from .model import (
    CellLineModel,
    Comparison,
    Condition,
    DifferentialExpressionResult,
    Experiment,
    FeatureCount,
    Gene,
    MatrixValue,
    Protein,
    ProteinAbundance,
    ProteinComparisonResult,
    ProteinGroup,
    Sample,
)
from .readers import MzTabDocument
from .registry import NamedEntityRegistry
from .table_formats import DESEQ2, FEATURE_COUNTS, MSSTATS, ColumnMap

logger = logging.getLogger(__name__)

MISSING_VALUES = ("", "NA", "null")

# DepMap/CCLE gene column names
PRIMARY_COLUMN = re.compile(r"^[^ ]+ \(\d+\)$")  # "SYMBOL (NCBI ID)"
SECONDARY_COLUMN = re.compile(r"^([^ ]+ \()?ENSG\d+\)?$")  # "SYMBOL (ENSG...)" or "ENSG..."

MZTAB_ABUNDANCE_COLUMN = "protein_abundance_study_variable[{}]"
MZTAB_DETAILS_ROW = "protein_details"


def parse_number(value: Optional[str], omit_zero: bool = False, context: str = "") -> Optional[float]:
    """Parse a numeric cell; None means "leave the attribute unset"."""
    if value is None:
        return None
    text = value.strip()
    if text in MISSING_VALUES:
        return None
    try:
        number = float(text)
    except ValueError:
        logger.debug("Ignoring non-numeric value %r%s", text, f" ({context})" if context else "")
        return None
    if math.isnan(number):
        return None
    if omit_zero and number == 0:
        return None
    return number


@dataclass
class ReconcileReport:
    """Per-file counts of what was kept and what was dropped."""

    source: str = ""
    table: str = ""
    rows_read: int = 0
    records: int = 0
    dropped_gene: int = 0
    dropped_reference: int = 0
    empty_values: int = 0
    dropped_columns: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {
            "rows_read": self.rows_read,
            "records": self.records,
            "dropped_gene": self.dropped_gene,
            "dropped_reference": self.dropped_reference,
            "empty_values": self.empty_values,
            "dropped_columns": len(self.dropped_columns),
        }


class TabularReconciler:
    """Turns results tables into records tied to canonical entities.

    Args:
        gene_resolver: Run-scoped gene resolver
        registry: Registry of the experiment the files belong to (defaults
            to ``experiment.registry``); tables that only reference genes
            and cell lines need none
        experiment: Experiment attached to the produced records
        proteins: Run-scoped protein cache, keyed by primary accession
        cell_lines: Run-scoped cell line cache, keyed by DepMap ID
    """

    def __init__(
        self,
        gene_resolver: GeneIdentityResolver,
        registry: Optional[NamedEntityRegistry] = None,
        experiment: Optional[Experiment] = None,
        proteins: Optional[EntityCache] = None,
        cell_lines: Optional[EntityCache] = None,
    ) -> None:
        self.gene_resolver = gene_resolver
        self.experiment = experiment
        if registry is None and experiment is not None:
            registry = experiment.registry
        self.registry = registry if registry is not None else NamedEntityRegistry()
        self.proteins: EntityCache = proteins if proteins is not None else EntityCache("protein")
        self.cell_lines: EntityCache = (
            cell_lines if cell_lines is not None else EntityCache("cell line")
        )
        self.protein_groups: List[ProteinGroup] = []
        self._group_index: Dict[str, ProteinGroup] = {}
        self._extra_samples: Dict[str, Sample] = {}
        self.last_report: Optional[ReconcileReport] = None

    # =========================================================================
    # RNA-seq
    # =========================================================================

    def reconcile_deseq2(
        self,
        header: Sequence[str],
        rows,
        comparison: Comparison,
        source: str = "",
    ) -> List[DifferentialExpressionResult]:
        """Reconcile a DESeq2 results table for one comparison."""
        column_map = DESEQ2.detect(header, source)
        report = ReconcileReport(source=source, table=DESEQ2.name)
        records = []

        treatment, control = self.registry.comparison_conditions(comparison)
        if treatment is None or control is None:
            missing = comparison.treatment if treatment is None else comparison.control
            logger.warning(
                "%s: comparison %s refers to unknown condition %s - skipping all rows",
                source or comparison.label,
                comparison.label,
                missing,
            )
            for _ in rows:
                report.rows_read += 1
                report.dropped_reference += 1
            return self._finish(report, records)

        for row in rows:
            report.rows_read += 1
            secondary_id = column_map.value(row, "gene")
            gene = self.gene_resolver.resolve(
                primary_id=column_map.value(row, "entrez"),
                secondary_id=secondary_id,
                symbol=column_map.value(row, "symbol"),
            )
            if gene is None:
                report.dropped_gene += 1
                continue

            def number(role: str) -> Optional[float]:
                return parse_number(column_map.value(row, role), context=f"{source} {role}")

            records.append(
                DifferentialExpressionResult(
                    gene=gene,
                    treatment=treatment,
                    control=control,
                    experiment=self.experiment,
                    gene_secondary_id=_secondary(secondary_id),
                    base_mean=number("baseMean"),
                    log2_fold_change=number("log2FoldChange"),
                    lfc_se=number("lfcSE"),
                    stat=number("stat"),
                    pvalue=number("pvalue"),
                    padj=number("padj"),
                )
            )

        return self._finish(report, records)

    def reconcile_feature_counts(
        self, header: Sequence[str], rows, source: str = ""
    ) -> List[FeatureCount]:
        """Reconcile a gene x (bio-replicate | sample) count matrix."""
        column_map = FEATURE_COUNTS.detect(header, source)
        report = ReconcileReport(source=source, table=FEATURE_COUNTS.name)
        records = []

        columns = self._map_count_columns(column_map, report)
        if not columns:
            logger.warning("%s: no count column matches a bio-replicate or sample", source)

        for row in rows:
            report.rows_read += 1
            if not columns:
                continue
            secondary_id = column_map.value(row, "gene")
            gene = self.gene_resolver.resolve(
                secondary_id=secondary_id, symbol=column_map.value(row, "symbol")
            )
            if gene is None:
                report.dropped_gene += 1
                continue

            for index, condition, bio_replicate, sample in columns:
                cell = row[index] if index < len(row) else None
                count = parse_number(cell, omit_zero=True, context=f"{source} {bio_replicate}")
                if count is None:
                    report.empty_values += 1
                    continue
                records.append(
                    FeatureCount(
                        gene=gene,
                        condition=condition,
                        bio_replicate=bio_replicate,
                        count=count,
                        sample=sample,
                        experiment=self.experiment,
                        gene_secondary_id=_secondary(secondary_id),
                    )
                )

        return self._finish(report, records)

    def _map_count_columns(
        self, column_map: ColumnMap, report: ReconcileReport
    ) -> List[Tuple[int, Condition, str, Optional[Sample]]]:
        """Map data columns to (index, condition, bio-replicate, sample) once per file."""
        columns = []
        for index, name in column_map.data_columns:
            replicate = self.registry.bio_replicate(name)
            if replicate is not None and replicate[0] is not None:
                condition, samples = replicate
                sample = samples[0] if len(samples) == 1 else None
                columns.append((index, condition, name, sample))
                continue

            sample = self.registry.sample(name)
            if sample is not None and sample.condition is not None:
                columns.append((index, sample.condition, sample.bio_replicate or name, sample))
                continue

            logger.warning(
                "%s: column %s matches no bio-replicate or sample - skipping column",
                report.source,
                name,
            )
            report.dropped_columns.append(name)
        return columns

    # =========================================================================
    # DepMap / CCLE matrices
    # =========================================================================

    def reconcile_gene_matrix(
        self,
        header: Sequence[str],
        rows,
        attribute: str,
        ids_are_primary: bool = False,
        header_start: str = "",
        source: str = "",
    ) -> List[MatrixValue]:
        """Reconcile a cell line x gene matrix (one value attribute per file).

        Gene columns are named ``SYMBOL (NCBI ID)`` when ``ids_are_primary``,
        otherwise ``SYMBOL (ENSG...)`` or a bare Ensembl ID.  When several
        columns resolve to the same gene, the first column whose symbol
        agrees with the resolved gene is kept, or else the first column.
        """
        report = ReconcileReport(source=source, table=f"matrix ({attribute})")
        records = []

        if not header or header[0].strip() != header_start:
            found = header[0] if header else ""
            raise TableFormatError(
                f"expected first header cell {header_start!r}, found {found!r}", source
            )
        genes = self._map_gene_columns(header, ids_are_primary, report)

        for row_number, row in enumerate(rows, start=2):
            report.rows_read += 1
            if len(row) != len(header):
                raise TableFormatError(
                    f"row {row_number} has {len(row)} values, header has {len(header)}", source
                )
            depmap_id = row[0].strip()
            cell_line = self.cell_lines.get_or_create(
                depmap_id, lambda: CellLineModel(depmap_id=depmap_id)
            )
            for index, gene in genes:
                value = parse_number(row[index], context=f"{source} {header[index]}")
                if value is None:
                    report.empty_values += 1
                    continue
                records.append(
                    MatrixValue(gene=gene, cell_line=cell_line, attribute=attribute, value=value)
                )

        return self._finish(report, records)

    def _map_gene_columns(
        self, header: Sequence[str], ids_are_primary: bool, report: ReconcileReport
    ) -> List[Tuple[int, Gene]]:
        pattern = PRIMARY_COLUMN if ids_are_primary else SECONDARY_COLUMN
        kept: Dict[str, Tuple[int, bool]] = {}  # primary id -> (column, symbol confirmed)
        genes: Dict[int, Gene] = {}

        for index in range(1, len(header)):
            column = header[index].strip()
            if not pattern.match(column):
                raise TableFormatError(f"unexpected gene column name {column!r}", report.source)

            parts = column.split(" ")
            if len(parts) == 2:
                symbol, gene_id = parts[0], parts[1][1:-1]
            else:
                symbol, gene_id = None, parts[0]

            gene, confirmed = self._resolve_column(gene_id, symbol, ids_are_primary)
            if gene is None:
                logger.warning("%s: could not resolve gene column %s - skipping", report.source, column)
                report.dropped_columns.append(column)
                continue

            previous = kept.get(gene.primary_id)
            if previous is None:
                kept[gene.primary_id] = (index, confirmed)
                genes[index] = gene
                continue

            previous_index, previous_confirmed = previous
            if confirmed and not previous_confirmed:
                keep, drop = index, previous_index
                kept[gene.primary_id] = (index, True)
                genes[index] = genes.pop(previous_index)
            else:
                keep, drop = previous_index, index
            logger.warning(
                "%s: multiple columns map to gene %s: keeping %s, dropping %s",
                report.source,
                gene.primary_id,
                header[keep],
                header[drop],
            )
            report.dropped_columns.append(header[drop])

        return sorted(genes.items())

    def _resolve_column(
        self, gene_id: str, symbol: Optional[str], ids_are_primary: bool
    ) -> Tuple[Optional[Gene], bool]:
        """Resolve a column's gene; the flag tells whether the symbol agrees."""
        resolver = self.gene_resolver
        if ids_are_primary:
            if not resolver.is_primary_identifier(gene_id):
                return None, False
            gene = resolver.resolve(primary_id=gene_id)
            return gene, symbol is not None and resolver.corroborates(gene, symbol)

        if symbol is not None and resolver.is_ambiguous(gene_id):
            gene = resolver.resolve(secondary_id=gene_id, symbol=symbol)
            return gene, gene is not None

        gene = resolver.resolve(secondary_id=gene_id)
        if gene is None:
            return None, False
        return gene, symbol is not None and resolver.corroborates(gene, symbol)

    # =========================================================================
    # Proteomics
    # =========================================================================

    def reconcile_mztab(self, document: MzTabDocument) -> List[ProteinAbundance]:
        """Reconcile the protein section of an mzTab file.

        One protein group is created per quantified row; a second row with
        the same set of accessions is a data integrity error.
        """
        source = document.source
        report = ReconcileReport(source=source, table="mzTab")
        records = []
        self.protein_groups = []
        self._group_index = {}

        if not document.ms_runs:
            raise TableFormatError("no sample information (MTD ms_run[...]-location)", source)
        if not document.protein_header:
            raise TableFormatError("no protein section (PRH)", source)

        header = document.protein_header
        positions = {name: i for i, name in enumerate(header)}
        if "accession" not in positions:
            raise TableFormatError("protein section has no 'accession' column", source)

        samples = []
        for run_number, name in enumerate(document.sample_names, start=1):
            column = MZTAB_ABUNDANCE_COLUMN.format(run_number)
            if column not in positions:
                raise TableFormatError(f"protein section has no {column!r} column", source)
            samples.append((positions[column], self._sample(name, source)))

        result_type = positions.get("opt_global_result_type")
        ambiguity = positions.get("ambiguity_members")
        seen = set()

        for row in document.protein_rows:
            report.rows_read += 1
            if len(row) != len(header):
                raise TableFormatError(
                    f"protein row has {len(row)} columns, PRH has {len(header)}", source
                )
            if result_type is not None and row[result_type] == MZTAB_DETAILS_ROW:
                continue

            accessions = [row[positions["accession"]].strip()]
            if ambiguity is not None:
                for member in row[ambiguity].split(","):
                    member = member.strip()
                    if member and member not in MISSING_VALUES and member not in accessions:
                        accessions.append(member)

            key = frozenset(accessions)
            if key in seen:
                raise DataIntegrityError(
                    f"{source}: duplicate protein group {', '.join(sorted(key))}"
                )
            seen.add(key)

            group = ProteinGroup(
                accessions=tuple(accessions),
                proteins=[self._protein(accession, source) for accession in accessions],
            )
            self.protein_groups.append(group)
            for accession, protein in zip(accessions, group.proteins):
                self._group_index.setdefault(accession, group)
                self._group_index.setdefault(protein.primary_accession, group)

            for index, sample in samples:
                abundance = parse_number(row[index], omit_zero=True, context=f"{source} {sample.name}")
                if abundance is None:
                    report.empty_values += 1
                    continue
                records.append(
                    ProteinAbundance(
                        protein_group=group,
                        sample=sample,
                        abundance=abundance,
                        experiment=self.experiment,
                    )
                )

        return self._finish(report, records)

    def reconcile_msstats(
        self, header: Sequence[str], rows, source: str = ""
    ) -> List[ProteinComparisonResult]:
        """Reconcile an MSstats group comparison table.

        Proteins are matched against the groups of the preceding
        ``reconcile_mztab`` call; labels (``treated vs control`` or
        ``treated-control``) against the registry's conditions.
        """
        column_map = MSSTATS.detect(header, source)
        report = ReconcileReport(source=source, table=MSSTATS.name)
        records = []
        labels: Dict[str, Optional[Tuple[Condition, Condition]]] = {}

        for row in rows:
            report.rows_read += 1
            protein = column_map.value(row, "protein") or ""
            group = self._protein_group(protein)
            if group is None:
                logger.debug("%s: unknown protein group %s - skipping row", source, protein)
                report.dropped_reference += 1
                continue

            label = (column_map.value(row, "label") or "").strip()
            if label not in labels:
                labels[label] = self._comparison_label(label)
                if labels[label] is None:
                    logger.warning("%s: cannot resolve comparison label %r to conditions", source, label)
            conditions = labels[label]
            if conditions is None:
                report.dropped_reference += 1
                continue

            def number(role: str) -> Optional[float]:
                return parse_number(column_map.value(row, role), context=f"{source} {role}")

            issue = column_map.value(row, "issue")
            records.append(
                ProteinComparisonResult(
                    protein_group=group,
                    treatment=conditions[0],
                    control=conditions[1],
                    experiment=self.experiment,
                    log2_fold_change=number("log2FC"),
                    standard_error=number("SE"),
                    t_value=number("Tvalue"),
                    degrees_freedom=number("DF"),
                    pvalue=number("pvalue"),
                    adj_pvalue=number("adj.pvalue"),
                    issue=issue.strip() if issue and issue.strip() not in MISSING_VALUES else None,
                )
            )

        return self._finish(report, records)

    def _protein(self, accession: str, source: str) -> Protein:
        parts = accession.split("|")
        if len(parts) != 3 or parts[0] not in ("sp", "tr"):
            raise TableFormatError(f"unexpected protein accession format {accession!r}", source)
        return self.proteins.get_or_create(
            parts[1], lambda: Protein(primary_identifier=parts[2], primary_accession=parts[1])
        )

    def _protein_group(self, protein: str) -> Optional[ProteinGroup]:
        for accession in protein.split(";"):
            group = self._group_index.get(accession.strip())
            if group is not None:
                return group
        return None

    def _sample(self, name: str, source: str) -> Sample:
        sample = self.registry.sample(name)
        if sample is not None:
            return sample
        sample = self._extra_samples.get(name)
        if sample is None:
            logger.info("%s: sample %s is not described in the metadata", source, name)
            sample = Sample(name=name, experiment=self.experiment)
            self._extra_samples[name] = sample
        return sample

    def _comparison_label(self, label: str) -> Optional[Tuple[Condition, Condition]]:
        """Split ``"A vs B"`` or ``"A-B"`` into two registered conditions."""
        if " vs " in label:
            candidates = [tuple(label.split(" vs ", 1))]
        else:
            candidates = [
                (label[:i], label[i + 1:]) for i, char in enumerate(label) if char == "-"
            ]
        for treatment_name, control_name in candidates:
            treatment = self.registry.condition(treatment_name.strip())
            control = self.registry.condition(control_name.strip())
            if treatment is not None and control is not None:
                return treatment, control
        return None

    @property
    def extra_samples(self) -> List[Sample]:
        """Samples found in proteomics files but not in the experiment metadata."""
        return list(self._extra_samples.values())

    # =========================================================================
    # Helpers
    # =========================================================================

    def _finish(self, report: ReconcileReport, records: list) -> list:
        report.records = len(records)
        self.last_report = report
        logger.info(
            "%s: %d rows, %d records, %d unresolved genes, %d unresolved references, "
            "%d empty values, %d dropped columns",
            report.source or report.table,
            report.rows_read,
            report.records,
            report.dropped_gene,
            report.dropped_reference,
            report.empty_values,
            len(report.dropped_columns),
        )
        return records


def _secondary(identifier: Optional[str]) -> Optional[str]:
    return strip_version(identifier) if is_valid_identifier(identifier) else None
