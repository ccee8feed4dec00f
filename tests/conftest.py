"""Shared fixtures: an in-memory identifier resolver and metadata documents."""

import copy

import pytest

from omics_warehouse.resolution.gene_resolver import GeneIdentityResolver
from omics_warehouse.resolution.id_resolver import IdResolverPort
from omics_warehouse.resolution.metadata import ExperimentMetadataAssembler

# identifier -> primary IDs
GENE_IDS = {
    "7157": {"7157"},
    "1017": {"1017"},
    "ENSG00000141510": {"7157"},
    "TP53": {"7157"},
    "ENSG00000123374": {"1017"},
    "CDK2": {"1017"},
    # two Ensembl IDs for one gene, and one ID shared by two genes
    "ENSG00000999998": {"7157"},
    "ENSG00000999999": {"7157", "1017"},
}


class FakePort(IdResolverPort):
    """Answers from a dict and records every call."""

    def __init__(self, mapping=None):
        self.mapping = GENE_IDS if mapping is None else mapping
        self.calls = []

    def resolve_candidates(self, taxon_id, entity_kind, identifier):
        self.calls.append(identifier)
        return set(self.mapping.get(identifier, ()))


BASE_DOCUMENT = {
    "experiment": {"short name": "EXP01", "species": "human", "project": "STORM"},
    "materials": {"HeLa": {"cell line": {"name": "HeLa", "tissue": "cervix"}}},
    "treatments": {"DMSO": {"untargeted": {"name": "DMSO", "concentration": "0.1%"}}},
    "conditions": {
        "control": {
            "material": "HeLa",
            "treatments": ["DMSO"],
            "samples": {"sampleA": {"replicates": ["r1.fastq", "r2.fastq"]}},
        }
    },
    "comparisons": [],
}


@pytest.fixture
def port():
    return FakePort()


@pytest.fixture
def gene_resolver(port):
    return GeneIdentityResolver(port, species="human")


@pytest.fixture
def metadata_document():
    """One cell line, one untargeted treatment, one condition with two replicates."""
    return copy.deepcopy(BASE_DOCUMENT)


@pytest.fixture
def study_document(metadata_document):
    """Control and treated conditions with a treated-vs-control comparison.

    Bio-replicates: control_R1 = r1, r2; control_R2 = r3; treated_R1 = t1;
    treated_R2 = t2.
    """
    document = metadata_document
    document["treatments"]["Drug1"] = {
        "inhibitor": {
            "name": "Drug1",
            "dose": "10 uM",
            "time point": "24h",
            "target gene": "CDK2",
            "Dotmatics reference": "STC-0001",
        }
    }
    document["conditions"]["control"]["samples"]["sampleB"] = {"file": "r3.fastq.gz"}
    document["conditions"]["treated"] = {
        "material": "HeLa",
        "treatments": ["Drug1"],
        "samples": {
            "sampleA": {"replicates": ["t1.fastq"], "label": "TMT-126"},
            "sampleB": {"file": "t2.fastq.gz"},
        },
    }
    document["comparisons"] = [{"treatment": {"name": "treated"}, "control": {"name": "control"}}]
    return document


@pytest.fixture
def experiment(study_document):
    return ExperimentMetadataAssembler().assemble(study_document)
