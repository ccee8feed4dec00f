"""Data model for experiments, resolved entities and reconciled result rows.

Entities (genes, materials, conditions, samples, ...) use identity
semantics (``eq=False``): two handles are the same entity only if they are
the same object, which is what the entity caches guarantee per canonical
key.  Result rows are plain value dataclasses.  Pure dataclasses with no
external imports.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Tuple

HUMAN_TAXON_ID = "9606"
MOUSE_TAXON_ID = "10090"


# =============================================================================
# Canonical entities shared across experiments
# =============================================================================


@dataclass(eq=False)
class Gene:
    """A canonical gene, keyed by its primary (NCBI/Entrez) identifier."""

    primary_id: str
    taxon_id: str = HUMAN_TAXON_ID


@dataclass(eq=False)
class Protein:
    """A protein parsed from a UniProt-style accession (``sp|P12345|NAME``)."""

    primary_identifier: str  # e.g. "TP53_HUMAN"
    primary_accession: str  # e.g. "P04637"


@dataclass(eq=False)
class ProteinGroup:
    """Proteins quantified together (leading accession plus ambiguity members)."""

    accessions: Tuple[str, ...]
    proteins: List[Protein] = field(default_factory=list)

    @property
    def leading_protein(self) -> Optional[Protein]:
        return self.proteins[0] if self.proteins else None


@dataclass(eq=False)
class CellLineModel:
    """A cancer cell line model as identified in DepMap/CCLE matrices."""

    depmap_id: str


# =============================================================================
# Experiment metadata
# =============================================================================


@dataclass(frozen=True)
class SkippedEntry:
    """A metadata entry or table column that was skipped, and why."""

    section: str  # "materials", "treatments", "conditions", "columns", ...
    key: str
    reason: str


@dataclass(frozen=True)
class Comparison:
    """An ordered (treatment, control) pair of condition names."""

    treatment: str
    control: str

    @property
    def label(self) -> str:
        return f"{self.treatment}_vs_{self.control}"


@dataclass(eq=False)
class Material:
    """Biological material a condition is derived from."""

    name: str
    tissue: Optional[str] = None
    experiment: Optional["Experiment"] = field(default=None, repr=False)

    material_type: ClassVar[str] = ""


@dataclass(eq=False)
class CellLine(Material):
    cell_line_name: Optional[str] = None

    material_type: ClassVar[str] = "cell line"


@dataclass(eq=False)
class Tumour(Material):
    primary_disease: Optional[str] = None
    disease_subtype: Optional[str] = None

    material_type: ClassVar[str] = "tumour"


@dataclass(eq=False)
class Tissue(Material):
    material_type: ClassVar[str] = "tissue"


@dataclass(eq=False)
class Treatment:
    """A perturbation applied to a material.

    ``dose_concentration`` holds the dose (inhibitors, activators) or the
    concentration (all other types) under one name.
    """

    name: str
    agent: Optional[str] = None
    time_point: Optional[str] = None
    dose_concentration: Optional[str] = None
    experiment: Optional["Experiment"] = field(default=None, repr=False)

    treatment_type: ClassVar[str] = ""


@dataclass(eq=False)
class _TargetedTreatment(Treatment):
    target_gene: Optional[str] = None
    external_reference: Optional[str] = None


@dataclass(eq=False)
class Inhibitor(_TargetedTreatment):
    treatment_type: ClassVar[str] = "inhibitor"


@dataclass(eq=False)
class Activator(_TargetedTreatment):
    treatment_type: ClassVar[str] = "activator"


@dataclass(eq=False)
class KnockDown(Treatment):
    perturbation_type: Optional[str] = None  # e.g. "siRNA", "CRISPRi"

    treatment_type: ClassVar[str] = "knock-down"


@dataclass(eq=False)
class Overexpression(Treatment):
    perturbation_type: Optional[str] = None

    treatment_type: ClassVar[str] = "overexpression"


@dataclass(eq=False)
class Untargeted(Treatment):
    treatment_type: ClassVar[str] = "untargeted"


@dataclass(eq=False)
class Sample:
    """A technical replicate (one input file) of a biological replicate."""

    name: str
    file: Optional[str] = None
    bio_replicate: Optional[str] = None  # e.g. "control_R1"
    sample_entry: Optional[str] = None  # sample key in the metadata document
    label: Optional[str] = None  # assay label
    condition: Optional["Condition"] = field(default=None, repr=False)
    experiment: Optional["Experiment"] = field(default=None, repr=False)


@dataclass(eq=False)
class Condition:
    """One material plus zero or more treatments."""

    name: str
    material: Material
    treatments: List[Treatment] = field(default_factory=list)
    samples: List[Sample] = field(default_factory=list)
    experiment: Optional["Experiment"] = field(default=None, repr=False)

    @property
    def bio_replicates(self) -> Dict[str, List[Sample]]:
        groups: Dict[str, List[Sample]] = {}
        for sample in self.samples:
            groups.setdefault(sample.bio_replicate or sample.name, []).append(sample)
        return groups


@dataclass(eq=False)
class Experiment:
    """Root entity for one metadata document.

    The named materials, treatments, conditions and samples live in the
    experiment's ``NamedEntityRegistry``; the properties below are read-only
    views in insertion order.
    """

    short_name: str
    species: str = "human"
    attributes: Dict[str, str] = field(default_factory=dict)
    comparisons: List[Comparison] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)
    registry: Optional["NamedEntityRegistry"] = field(default=None, repr=False)  # noqa: F821

    @property
    def materials(self) -> List[Material]:
        return list(self.registry.materials.values()) if self.registry else []

    @property
    def treatments(self) -> List[Treatment]:
        return list(self.registry.treatments.values()) if self.registry else []

    @property
    def conditions(self) -> List[Condition]:
        return list(self.registry.conditions.values()) if self.registry else []

    @property
    def samples(self) -> List[Sample]:
        return list(self.registry.samples.values()) if self.registry else []


# =============================================================================
# Reconciled result rows
# =============================================================================


@dataclass
class DifferentialExpressionResult:
    """One row of a DESeq2 comparison table.  Unset values are ``None``."""

    gene: Gene
    treatment: Condition
    control: Condition
    experiment: Optional[Experiment] = field(default=None, repr=False)
    gene_secondary_id: Optional[str] = None
    base_mean: Optional[float] = None
    log2_fold_change: Optional[float] = None
    lfc_se: Optional[float] = None
    stat: Optional[float] = None
    pvalue: Optional[float] = None
    padj: Optional[float] = None


@dataclass
class FeatureCount:
    """Gene-level count for one biological replicate (or sample)."""

    gene: Gene
    condition: Condition
    bio_replicate: str
    count: float
    sample: Optional[Sample] = None
    experiment: Optional[Experiment] = field(default=None, repr=False)
    gene_secondary_id: Optional[str] = None


@dataclass
class ProteinAbundance:
    """Label-free quantification of a protein group in one sample."""

    protein_group: ProteinGroup
    sample: Sample
    abundance: float
    experiment: Optional[Experiment] = field(default=None, repr=False)


@dataclass
class ProteinComparisonResult:
    """One row of an MSstats group comparison table."""

    protein_group: ProteinGroup
    treatment: Condition
    control: Condition
    experiment: Optional[Experiment] = field(default=None, repr=False)
    log2_fold_change: Optional[float] = None
    standard_error: Optional[float] = None
    t_value: Optional[float] = None
    degrees_freedom: Optional[float] = None
    pvalue: Optional[float] = None
    adj_pvalue: Optional[float] = None
    issue: Optional[str] = None


@dataclass
class MatrixValue:
    """One gene x cell line value from a DepMap/CCLE matrix."""

    gene: Gene
    cell_line: CellLineModel
    attribute: str  # e.g. "gene_effect", "copy_number", "expression"
    value: float
