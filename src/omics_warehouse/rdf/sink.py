"""Persistence sinks for assembled entities and reconciled records.

The loaders hand every fully attributed entity to ``ItemSink.store`` and
never expect the sink to deduplicate.  ``RdfSink`` writes Biolink-typed
nodes and reified measurement associations into an rdflib graph; URIs are
derived from names and identifiers only, so the same input always gives
the same graph.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, Union

from rdflib import URIRef

from ..resolution.gene_resolver import SPECIES_TAXON_IDS
from ..resolution.model import (
    CellLine,
    CellLineModel,
    Condition,
    DifferentialExpressionResult,
    Experiment,
    FeatureCount,
    Gene,
    Material,
    MatrixValue,
    Protein,
    ProteinAbundance,
    ProteinComparisonResult,
    ProteinGroup,
    Sample,
    Tissue,
    Treatment,
    Tumour,
)
from .config import DEPMAP, ENSEMBL, NCBIGENE, NCBITAXON, UNIPROT, RdfConfig, create_node_uri, stable_id
from .turtle_writer import TurtleWriter, format_for_path

logger = logging.getLogger(__name__)


class ItemSink(ABC):
    """Accepts entities and records and gives them a durable identifier."""

    @abstractmethod
    def store(self, entity: Any) -> str:
        raise NotImplementedError("derived classes must implement store")


class MemorySink(ItemSink):
    """Keeps stored items in a list, in store order."""

    def __init__(self) -> None:
        self.items: List[Any] = []

    def store(self, entity: Any) -> str:
        self.items.append(entity)
        return f"{type(entity).__name__}/{len(self.items)}"

    def of_type(self, cls: Type) -> List[Any]:
        return [item for item in self.items if isinstance(item, cls)]

    def __len__(self) -> int:
        return len(self.items)


# =============================================================================
# URIs
# =============================================================================


def _experiment_name(entity) -> str:
    experiment = getattr(entity, "experiment", None)
    return experiment.short_name if experiment is not None else "unassigned"


def experiment_uri(experiment: Experiment) -> URIRef:
    return create_node_uri("experiment", experiment.short_name)


def material_uri(material: Material) -> URIRef:
    return create_node_uri("material", _experiment_name(material), material.name)


def treatment_uri(treatment: Treatment) -> URIRef:
    return create_node_uri("treatment", _experiment_name(treatment), treatment.name)


def condition_uri(condition: Condition) -> URIRef:
    return create_node_uri("condition", _experiment_name(condition), condition.name)


def sample_uri(sample: Sample) -> URIRef:
    return create_node_uri("sample", _experiment_name(sample), sample.name)


def gene_uri(gene: Gene) -> URIRef:
    return NCBIGENE[gene.primary_id]


def protein_uri(protein: Protein) -> URIRef:
    return UNIPROT[protein.primary_accession]


def protein_group_uri(group: ProteinGroup) -> URIRef:
    return create_node_uri("protein_group", stable_id(sorted(group.accessions)))


def cell_line_uri(cell_line: CellLineModel) -> URIRef:
    return DEPMAP[cell_line.depmap_id]


_MATERIAL_NODE_TYPES = {CellLine: "CellLine", Tumour: "Tumour", Tissue: "Tissue"}


# =============================================================================
# RDF sink
# =============================================================================


class RdfSink(ItemSink):
    """Writes entities and records into a ``TurtleWriter`` graph.

    Args:
        writer: Graph to write into (a new one by default)
        config: Output options
    """

    def __init__(self, writer: Optional[TurtleWriter] = None, config: Optional[RdfConfig] = None):
        self.writer = writer or TurtleWriter()
        self.config = config or RdfConfig()
        self.counts: Dict[str, int] = {}
        self._handlers: Dict[Type, Callable[[Any], URIRef]] = {
            Experiment: self._store_experiment,
            Material: self._store_material,
            Treatment: self._store_treatment,
            Condition: self._store_condition,
            Sample: self._store_sample,
            Gene: self._store_gene,
            Protein: self._store_protein,
            ProteinGroup: self._store_protein_group,
            CellLineModel: self._store_cell_line,
            DifferentialExpressionResult: self._store_differential_expression,
            FeatureCount: self._store_feature_count,
            ProteinAbundance: self._store_protein_abundance,
            ProteinComparisonResult: self._store_protein_comparison,
            MatrixValue: self._store_matrix_value,
        }

    def store(self, entity: Any) -> str:
        for cls in type(entity).__mro__:
            handler = self._handlers.get(cls)
            if handler is not None:
                uri = handler(entity)
                self.counts[cls.__name__] = self.counts.get(cls.__name__, 0) + 1
                return str(uri)
        raise TypeError(f"Cannot store {type(entity).__name__} as RDF")

    def write(self, path: Union[str, Path], fmt: Optional[str] = None) -> Path:
        """Serialize the graph (format from ``fmt``, the config, or the file suffix)."""
        if fmt is None and format_for_path(path) is None:
            fmt = self.config.output_format
        path = self.writer.write(path, fmt)
        logger.info("Wrote %s (%d triples)", path, self.writer.get_triple_count())
        return path

    # -----------------------------------------------------------------
    # Metadata entities
    # -----------------------------------------------------------------

    def _store_experiment(self, experiment: Experiment) -> URIRef:
        uri = experiment_uri(experiment)
        properties = {"short_name": experiment.short_name, "species": experiment.species}
        properties.update(experiment.attributes)
        self.writer.add_node(uri, "Experiment", properties)

        taxon_id = SPECIES_TAXON_IDS.get(experiment.species)
        if taxon_id is not None:
            taxon = NCBITAXON[taxon_id]
            self.writer.add_node(taxon, "OrganismTaxon", {"name": experiment.species})
            self.writer.add_relationship(uri, "IN_TAXON", taxon)
        return uri

    def _store_material(self, material: Material) -> URIRef:
        uri = material_uri(material)
        properties = {
            "name": material.name,
            "material_type": material.material_type,
            "tissue": material.tissue,
        }
        if isinstance(material, CellLine):
            properties["cell_line_name"] = material.cell_line_name
        elif isinstance(material, Tumour):
            properties["primary_disease"] = material.primary_disease
            properties["disease_subtype"] = material.disease_subtype
        self.writer.add_node(uri, _MATERIAL_NODE_TYPES.get(type(material), "Material"), properties)
        self._part_of_experiment(uri, material)
        return uri

    def _store_treatment(self, treatment: Treatment) -> URIRef:
        uri = treatment_uri(treatment)
        properties = {
            "name": treatment.name,
            "treatment_type": treatment.treatment_type,
            "agent": treatment.agent,
            "time_point": treatment.time_point,
            "dose_concentration": treatment.dose_concentration,
        }
        for extra in ("target_gene", "external_reference", "perturbation_type"):
            properties[extra] = getattr(treatment, extra, None)
        self.writer.add_node(uri, "Treatment", properties)
        self._part_of_experiment(uri, treatment)
        return uri

    def _store_condition(self, condition: Condition) -> URIRef:
        uri = condition_uri(condition)
        self.writer.add_node(uri, "Condition", {"name": condition.name})
        self.writer.add_relationship(uri, "DERIVES_FROM", material_uri(condition.material))
        for treatment in condition.treatments:
            self.writer.add_relationship(uri, "HAS_INPUT", treatment_uri(treatment))
        self._part_of_experiment(uri, condition)
        return uri

    def _store_sample(self, sample: Sample) -> URIRef:
        uri = sample_uri(sample)
        self.writer.add_node(uri, "Sample", {
            "name": sample.name,
            "file": sample.file,
            "bio_replicate": sample.bio_replicate,
            "label": sample.label,
        })
        if sample.condition is not None:
            self.writer.add_relationship(uri, "PART_OF", condition_uri(sample.condition))
        self._part_of_experiment(uri, sample)
        return uri

    def _part_of_experiment(self, uri: URIRef, entity) -> None:
        if getattr(entity, "experiment", None) is not None:
            self.writer.add_relationship(uri, "PART_OF", experiment_uri(entity.experiment))

    # -----------------------------------------------------------------
    # Shared entities
    # -----------------------------------------------------------------

    def _store_gene(self, gene: Gene) -> URIRef:
        uri = gene_uri(gene)
        self.writer.add_node(uri, "Gene", {
            "id": f"NCBIGene:{gene.primary_id}",
            "in_taxon": NCBITAXON[gene.taxon_id],
        })
        return uri

    def _store_protein(self, protein: Protein) -> URIRef:
        uri = protein_uri(protein)
        self.writer.add_node(uri, "Protein", {
            "id": f"UniProtKB:{protein.primary_accession}",
            "name": protein.primary_identifier,
        })
        return uri

    def _store_protein_group(self, group: ProteinGroup) -> URIRef:
        uri = protein_group_uri(group)
        self.writer.add_node(uri, "ProteinGroup", {"accession": ";".join(group.accessions)})
        for protein in group.proteins:
            self.writer.add_relationship(uri, "HAS_PART", protein_uri(protein))
        return uri

    def _store_cell_line(self, cell_line: CellLineModel) -> URIRef:
        uri = cell_line_uri(cell_line)
        self.writer.add_node(uri, "CellLineModel", {"id": f"DepMap:{cell_line.depmap_id}"})
        return uri

    # -----------------------------------------------------------------
    # Measurements
    # -----------------------------------------------------------------

    def _store_differential_expression(self, record: DifferentialExpressionResult) -> URIRef:
        properties = {
            "control_condition": condition_uri(record.control),
            "base_mean": record.base_mean,
            "log2fc": record.log2_fold_change,
            "lfc_se": record.lfc_se,
            "stat": record.stat,
            "p_value": record.pvalue,
            "adj_p_value": record.padj,
        }
        if record.gene_secondary_id:
            properties["ensembl_id"] = ENSEMBL[record.gene_secondary_id]
        return self.writer.add_relationship(
            condition_uri(record.treatment),
            "MEASURED_DIFFERENTIAL_EXPRESSION",
            gene_uri(record.gene),
            properties=properties,
            key=(
                _experiment_name(record),
                record.treatment.name,
                record.control.name,
                record.gene.primary_id,
            ),
        )

    def _store_feature_count(self, record: FeatureCount) -> URIRef:
        if record.sample is not None:
            subject = sample_uri(record.sample)
            measured_in = ("sample", record.sample.name)
        else:
            subject = condition_uri(record.condition)
            measured_in = ("bio_replicate", record.bio_replicate)
        properties = {"count": record.count, "bio_replicate": record.bio_replicate}
        if record.gene_secondary_id:
            properties["ensembl_id"] = ENSEMBL[record.gene_secondary_id]
        return self.writer.add_relationship(
            subject,
            "MEASURED_EXPRESSION",
            gene_uri(record.gene),
            properties=properties,
            key=(_experiment_name(record),) + measured_in + (record.gene.primary_id,),
        )

    def _store_protein_abundance(self, record: ProteinAbundance) -> URIRef:
        group = protein_group_uri(record.protein_group)
        return self.writer.add_relationship(
            sample_uri(record.sample),
            "MEASURED_ABUNDANCE",
            group,
            properties={"abundance": record.abundance},
            key=(_experiment_name(record), record.sample.name, str(group)),
        )

    def _store_protein_comparison(self, record: ProteinComparisonResult) -> URIRef:
        group = protein_group_uri(record.protein_group)
        return self.writer.add_relationship(
            condition_uri(record.treatment),
            "MEASURED_DIFFERENTIAL_ABUNDANCE",
            group,
            properties={
                "control_condition": condition_uri(record.control),
                "log2fc": record.log2_fold_change,
                "standard_error": record.standard_error,
                "t_value": record.t_value,
                "degrees_freedom": record.degrees_freedom,
                "p_value": record.pvalue,
                "adj_p_value": record.adj_pvalue,
                "issue": record.issue,
            },
            key=(_experiment_name(record), record.treatment.name, record.control.name, str(group)),
        )

    def _store_matrix_value(self, record: MatrixValue) -> URIRef:
        return self.writer.add_relationship(
            cell_line_uri(record.cell_line),
            "MEASURED_GENE_VALUE",
            gene_uri(record.gene),
            properties={"attribute": record.attribute, "value": record.value},
            key=(record.attribute, record.cell_line.depmap_id, record.gene.primary_id),
        )
