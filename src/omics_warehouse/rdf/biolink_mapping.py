"""Biolink Model class and predicate mappings for warehouse export.

Maps internal node types and relationship types to their Biolink Model
equivalents. Determines which relationships require reification
(association nodes with additional properties).
"""

from rdflib import URIRef

from .config import BIOLINK, OMICS

# =============================================================================
# Node type → Biolink class
# =============================================================================

BIOLINK_NODE_CLASSES = {
    "Experiment": BIOLINK.Study,
    # Materials
    "CellLine": BIOLINK.CellLine,
    "Tumour": BIOLINK.MaterialSample,
    "Tissue": BIOLINK.AnatomicalEntity,
    # Treatments (all variants)
    "Treatment": BIOLINK.Treatment,
    "Condition": BIOLINK.StudyPopulation,
    "Sample": BIOLINK.MaterialSample,
    # Shared entities
    "Gene": BIOLINK.Gene,
    "Protein": BIOLINK.Protein,
    "ProteinGroup": BIOLINK.NamedThing,
    "CellLineModel": BIOLINK.CellLine,
    "OrganismTaxon": BIOLINK.OrganismTaxon,
}


# =============================================================================
# Relationship type → Biolink predicate
# =============================================================================

BIOLINK_PREDICATES = {
    "PART_OF": BIOLINK.part_of,
    "DERIVES_FROM": BIOLINK.derives_from,
    "HAS_INPUT": BIOLINK.has_input,
    "HAS_PART": BIOLINK.has_part,
    "IN_TAXON": BIOLINK.in_taxon,
    # Measurements
    "MEASURED_DIFFERENTIAL_EXPRESSION": BIOLINK.affects_expression_of,
    "MEASURED_EXPRESSION": BIOLINK.expresses,
    "MEASURED_ABUNDANCE": BIOLINK.expresses,
    "MEASURED_DIFFERENTIAL_ABUNDANCE": BIOLINK.affects_abundance_of,
    "MEASURED_GENE_VALUE": BIOLINK.associated_with,
    # Generic
    "ASSOCIATED_WITH": BIOLINK.associated_with,
    "RELATED_TO": BIOLINK.related_to,
}

# =============================================================================
# Property predicates (for node/association attributes)
# =============================================================================

# Standard Biolink properties
_BIOLINK_PROPERTIES = {
    "name": BIOLINK.name,
    "symbol": BIOLINK.symbol,
    "id": BIOLINK.id,
    "description": BIOLINK.description,
    "in_taxon": BIOLINK.in_taxon,
    "subject": BIOLINK.subject,
    "predicate": BIOLINK.predicate,
    "object": BIOLINK["object"],
}

# Custom properties for warehouse records
_CUSTOM_PROPERTIES = {
    # Differential expression
    "base_mean": OMICS.base_mean,
    "log2fc": OMICS.log2fc,
    "lfc_se": OMICS.lfc_se,
    "stat": OMICS.stat,
    "p_value": OMICS.p_value,
    "adj_p_value": OMICS.adj_p_value,
    "control_condition": OMICS.control_condition,
    "ensembl_id": OMICS.ensembl_id,
    # Counts and abundances
    "count": OMICS["count"],
    "bio_replicate": OMICS.bio_replicate,
    "abundance": OMICS.abundance,
    # MSstats
    "standard_error": OMICS.standard_error,
    "t_value": OMICS.t_value,
    "degrees_freedom": OMICS.degrees_freedom,
    "issue": OMICS.issue,
    # Matrices
    "attribute": OMICS.attribute,
    "value": OMICS.value,
    # Metadata
    "short_name": OMICS.short_name,
    "species": OMICS.species,
    "material_type": OMICS.material_type,
    "treatment_type": OMICS.treatment_type,
    "agent": OMICS.agent,
    "time_point": OMICS.time_point,
    "dose_concentration": OMICS.dose_concentration,
    "target_gene": OMICS.target_gene,
    "external_reference": OMICS.external_reference,
    "perturbation_type": OMICS.perturbation_type,
    "file": OMICS.file,
    "label": OMICS.label,
    "accession": OMICS.accession,
}


# =============================================================================
# Reified relationship types (associations with properties)
# =============================================================================

_REIFIED_RELATIONSHIPS = {
    "MEASURED_DIFFERENTIAL_EXPRESSION": BIOLINK.GeneExpressionMixin,
    "MEASURED_EXPRESSION": BIOLINK.GeneExpressionMixin,
    "MEASURED_ABUNDANCE": BIOLINK.Association,
    "MEASURED_DIFFERENTIAL_ABUNDANCE": BIOLINK.Association,
    "MEASURED_GENE_VALUE": BIOLINK.Association,
}


# =============================================================================
# Public lookup functions
# =============================================================================


def get_biolink_class(node_type: str) -> URIRef:
    """Get the Biolink class URI for a node type; falls back to biolink:NamedThing."""
    return BIOLINK_NODE_CLASSES.get(node_type, BIOLINK.NamedThing)


def get_biolink_predicate(relationship_type: str) -> URIRef:
    """Get the Biolink predicate URI for a relationship type; falls back to biolink:related_to."""
    return BIOLINK_PREDICATES.get(relationship_type, BIOLINK.related_to)


def get_property_predicate(property_name: str) -> URIRef:
    """Get the predicate URI for a node or association property.

    Checks standard Biolink properties first, then custom properties, and
    finally mints a property in the project namespace.
    """
    if property_name in _BIOLINK_PROPERTIES:
        return _BIOLINK_PROPERTIES[property_name]
    if property_name in _CUSTOM_PROPERTIES:
        return _CUSTOM_PROPERTIES[property_name]
    return OMICS[property_name]


def is_reified_relationship(relationship_type: str) -> bool:
    """Check if a relationship type should be reified as an association node."""
    return relationship_type in _REIFIED_RELATIONSHIPS


def get_association_class(relationship_type: str) -> URIRef:
    return _REIFIED_RELATIONSHIPS.get(relationship_type, BIOLINK.Association)
