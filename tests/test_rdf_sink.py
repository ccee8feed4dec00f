"""Tests for the RDF export layer: writer, Biolink mapping and sinks."""

import pytest
from rdflib import Graph, Literal, URIRef
from rdflib.namespace import RDF, XSD

from omics_warehouse.rdf.biolink_mapping import (
    _BIOLINK_PROPERTIES,
    _CUSTOM_PROPERTIES,
    get_biolink_class,
    get_property_predicate,
    is_reified_relationship,
)
from omics_warehouse.rdf.config import (
    BIOLINK,
    NCBIGENE,
    NCBITAXON,
    OMICS,
    create_node_uri,
    sanitize_uri_identifier,
    stable_id,
)
from omics_warehouse.rdf.sink import (
    MemorySink,
    RdfSink,
    condition_uri,
    experiment_uri,
    protein_group_uri,
    sample_uri,
)
from omics_warehouse.rdf.turtle_writer import TurtleWriter, format_for_path, to_literal
from omics_warehouse.resolution.metadata import ExperimentMetadataAssembler
from omics_warehouse.resolution.model import (
    CellLineModel,
    DifferentialExpressionResult,
    Gene,
    MatrixValue,
    Protein,
    ProteinAbundance,
    ProteinComparisonResult,
    ProteinGroup,
)
from omics_warehouse.resolution.reconciler import TabularReconciler


def _make_de_record(experiment, padj=None):
    registry = experiment.registry
    return DifferentialExpressionResult(
        gene=Gene("7157"),
        treatment=registry.condition("treated"),
        control=registry.condition("control"),
        experiment=experiment,
        gene_secondary_id="ENSG00000141510",
        log2_fold_change=1.5,
        padj=padj,
    )


# ---------------------------------------------------------------------------
# URI helpers and mappings
# ---------------------------------------------------------------------------


class TestUris:

    def test_sanitize(self):
        assert sanitize_uri_identifier(" treated 24h ") == "treated_24h"
        assert sanitize_uri_identifier("a<b>c") == "abc"

    def test_create_node_uri(self):
        assert create_node_uri("condition", "EXP01", "control") == URIRef(
            "https://omics-warehouse.org/condition/EXP01/control"
        )

    def test_stable_id(self):
        assert stable_id(["a", "b"]) == stable_id(["a", "b"])
        assert stable_id(["a", "b"]) != stable_id(["ab"])
        assert len(stable_id(["x"], length=8)) == 8

    def test_entity_uris_scoped_by_experiment(self, experiment):
        sample = experiment.registry.sample("r1")
        assert sample_uri(sample) == OMICS["sample/EXP01/r1"]
        assert experiment_uri(experiment) == OMICS["experiment/EXP01"]

    def test_protein_group_uri_ignores_member_order(self):
        first = ProteinGroup(accessions=("sp|P1|A", "sp|P2|B"))
        second = ProteinGroup(accessions=("sp|P2|B", "sp|P1|A"))
        assert protein_group_uri(first) == protein_group_uri(second)


class TestBiolinkMapping:

    def test_classes(self):
        assert get_biolink_class("Gene") == BIOLINK.Gene
        assert get_biolink_class("Unknown") == BIOLINK.NamedThing

    def test_properties(self):
        assert get_property_predicate("name") == BIOLINK.name
        assert get_property_predicate("log2fc") == OMICS.log2fc
        assert get_property_predicate("brand_new") == OMICS.brand_new

    @pytest.mark.parametrize("name", sorted(set(_BIOLINK_PROPERTIES) | set(_CUSTOM_PROPERTIES)))
    def test_property_predicates_are_terms(self, name):
        # namespace attributes named like str methods (count, index) are not URIs
        predicate = get_property_predicate(name)
        assert isinstance(predicate, URIRef)
        assert str(predicate).endswith(name)

    def test_reified(self):
        assert is_reified_relationship("MEASURED_EXPRESSION")
        assert not is_reified_relationship("PART_OF")


# ---------------------------------------------------------------------------
# TurtleWriter
# ---------------------------------------------------------------------------


class TestTurtleWriter:

    def test_node_properties_skip_none(self):
        writer = TurtleWriter()
        uri = NCBIGENE["7157"]
        writer.add_node(uri, "Gene", {"id": "NCBIGene:7157", "symbol": None, "score": 2.5})
        graph = writer.graph
        assert (uri, RDF.type, BIOLINK.Gene) in graph
        assert (uri, BIOLINK.id, Literal("NCBIGene:7157")) in graph
        assert (uri, OMICS.score, Literal(2.5, datatype=XSD.double)) in graph
        assert writer.get_triple_count() == 3

    def test_plain_relationship(self):
        writer = TurtleWriter()
        result = writer.add_relationship(OMICS["a"], "PART_OF", OMICS["b"])
        assert result is None
        assert (OMICS["a"], BIOLINK.part_of, OMICS["b"]) in writer.graph

    def test_reified_relationship_key_is_deterministic(self):
        first = TurtleWriter().add_relationship(
            OMICS["s"], "MEASURED_EXPRESSION", NCBIGENE["1"], {"count": 3.0}, key=("k",)
        )
        second = TurtleWriter().add_relationship(
            OMICS["other"], "MEASURED_EXPRESSION", NCBIGENE["1"], {"count": 4.0}, key=("k",)
        )
        assert first == second
        assert str(first).startswith(str(OMICS["association/"]))

    def test_select(self):
        writer = TurtleWriter()
        writer.add_node(NCBIGENE["7157"], "Gene", {"id": "NCBIGene:7157"})
        rows = writer.select("SELECT ?g WHERE { ?g a <https://w3id.org/biolink/vocab/Gene> }")
        assert rows == [{"g": NCBIGENE["7157"]}]

    def test_literals(self):
        assert to_literal(True).datatype == XSD.boolean
        assert to_literal(3).datatype == XSD.integer
        assert to_literal(0.5).datatype == XSD.double
        assert to_literal("24h") == Literal("24h")

    def test_format_for_path(self):
        assert format_for_path("out.TTL") == "turtle"
        assert format_for_path("out.nt") == "nt"
        assert format_for_path("out.rdf") is None


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class TestMemorySink:

    def test_store_and_filter(self):
        sink = MemorySink()
        assert sink.store(Gene("1")) == "Gene/1"
        assert sink.store(CellLineModel("ACH-1")) == "CellLineModel/2"
        assert sink.of_type(Gene)[0].primary_id == "1"
        assert len(sink) == 2


class TestRdfSink:

    @pytest.fixture
    def sink(self, study_document):
        sink = RdfSink()
        ExperimentMetadataAssembler(sink=sink).assemble(study_document)
        return sink

    def test_metadata_graph(self, sink):
        graph = sink.writer.graph
        experiment = OMICS["experiment/EXP01"]
        control = OMICS["condition/EXP01/control"]
        treated = OMICS["condition/EXP01/treated"]

        assert (experiment, RDF.type, BIOLINK.Study) in graph
        assert (experiment, BIOLINK.in_taxon, NCBITAXON["9606"]) in graph
        assert (control, RDF.type, BIOLINK.StudyPopulation) in graph
        assert (control, BIOLINK.derives_from, OMICS["material/EXP01/HeLa"]) in graph
        assert (treated, BIOLINK.has_input, OMICS["treatment/EXP01/Drug1"]) in graph
        assert (OMICS["sample/EXP01/r1"], BIOLINK.part_of, control) in graph
        assert (OMICS["material/EXP01/HeLa"], RDF.type, BIOLINK.CellLine) in graph
        assert sink.counts["Sample"] == 5
        assert sink.counts["Condition"] == 2

    def test_differential_expression_association(self, sink, experiment):
        uri = URIRef(sink.store(_make_de_record(experiment)))
        graph = sink.writer.graph

        assert (uri, BIOLINK.subject, condition_uri(experiment.registry.condition("treated"))) in graph
        assert (uri, BIOLINK["object"], NCBIGENE["7157"]) in graph
        assert (uri, OMICS.log2fc, Literal(1.5, datatype=XSD.double)) in graph
        assert (uri, OMICS.adj_p_value, None) not in graph

    def test_same_record_same_association(self, experiment):
        first = RdfSink().store(_make_de_record(experiment))
        second = RdfSink().store(_make_de_record(experiment, padj=0.5))
        assert first == second

    def test_shared_entities(self):
        sink = RdfSink()
        group = ProteinGroup(
            accessions=("sp|P04637|P53_HUMAN",), proteins=[Protein("P53_HUMAN", "P04637")]
        )
        group_uri = URIRef(sink.store(group))
        sink.store(group.proteins[0])
        sink.store(
            MatrixValue(Gene("7157"), CellLineModel("ACH-000001"), "gene_effect", -0.8)
        )
        graph = sink.writer.graph

        assert (group_uri, BIOLINK.has_part, URIRef("https://www.uniprot.org/uniprot/P04637")) in graph
        cell_line = URIRef("https://depmap.org/portal/cell_line/ACH-000001")
        assert (None, BIOLINK.subject, cell_line) in graph

    def test_unknown_type(self):
        with pytest.raises(TypeError, match="Cannot store str as RDF"):
            RdfSink().store("not an entity")

    def test_write_round_trip(self, sink, tmp_path):
        path = sink.write(tmp_path / "out" / "exp.ttl")
        assert path.exists()
        graph = Graph()
        graph.parse(str(path), format="turtle")
        assert len(graph) == sink.writer.get_triple_count()

    def test_write_uses_configured_format(self, sink, tmp_path):
        sink.config.output_format = "nt"
        path = sink.write(tmp_path / "exp.rdf")
        graph = Graph()
        graph.parse(str(path), format="nt")
        assert len(graph) == sink.writer.get_triple_count()


class TestRdfSinkRecords:
    """Every record type becomes one association per measured value."""

    @pytest.fixture
    def reconciler(self, gene_resolver, experiment):
        return TabularReconciler(gene_resolver, experiment=experiment)

    @staticmethod
    def _counts(sink, uris):
        graph = sink.writer.graph
        return sorted(float(graph.value(URIRef(uri), OMICS["count"])) for uri in uris)

    def test_feature_counts_by_sample_column(self, reconciler):
        # r1 and r2 are technical replicates of control_R1
        records = reconciler.reconcile_feature_counts(
            ["gene_id", "r1", "r2"], [["ENSG00000141510", "5", "9"]]
        )
        sink = RdfSink()
        uris = [sink.store(record) for record in records]

        assert len(set(uris)) == 2
        assert self._counts(sink, uris) == [5.0, 9.0]
        graph = sink.writer.graph
        for uri, record in zip(uris, records):
            assert record.bio_replicate == "control_R1"
            assert set(graph.objects(URIRef(uri), BIOLINK.subject)) == {sample_uri(record.sample)}
            assert (URIRef(uri), BIOLINK["object"], NCBIGENE["7157"]) in graph

    def test_feature_counts_by_bio_replicate_column(self, reconciler, experiment):
        records = reconciler.reconcile_feature_counts(
            ["gene_id", "control_R1", "control_R2"], [["ENSG00000141510", "3", "4"]]
        )
        sink = RdfSink()
        uris = [sink.store(record) for record in records]

        assert len(set(uris)) == 2
        assert self._counts(sink, uris) == [3.0, 4.0]
        graph = sink.writer.graph
        control = experiment.registry.condition("control")
        # control_R1 has two samples, so its count hangs off the condition
        assert (URIRef(uris[0]), BIOLINK.subject, condition_uri(control)) in graph
        assert (URIRef(uris[1]), BIOLINK.subject, sample_uri(experiment.registry.sample("r3"))) in graph
        assert (URIRef(uris[0]), OMICS.bio_replicate, Literal("control_R1")) in graph

    def test_feature_count_reload_gives_same_association(self, reconciler):
        header, rows = ["gene_id", "r1"], [["ENSG00000141510", "5"]]
        first = RdfSink().store(reconciler.reconcile_feature_counts(header, rows)[0])
        second = RdfSink().store(reconciler.reconcile_feature_counts(header, rows)[0])
        assert first == second

    def test_protein_records(self, experiment):
        registry = experiment.registry
        group = ProteinGroup(accessions=("sp|P04637|P53_HUMAN",))
        sink = RdfSink()
        abundances = [
            sink.store(ProteinAbundance(group, registry.sample(name), value, experiment))
            for name, value in (("r1", 10.0), ("r2", 12.0))
        ]
        comparison = URIRef(
            sink.store(
                ProteinComparisonResult(
                    group,
                    registry.condition("treated"),
                    registry.condition("control"),
                    experiment,
                    log2_fold_change=1.0,
                    issue="oneConditionMissing",
                )
            )
        )
        graph = sink.writer.graph

        assert len(set(abundances)) == 2
        first = URIRef(abundances[0])
        assert (first, BIOLINK.subject, sample_uri(registry.sample("r1"))) in graph
        assert (first, BIOLINK["object"], protein_group_uri(group)) in graph
        assert (first, OMICS.abundance, Literal(10.0, datatype=XSD.double)) in graph
        assert (comparison, BIOLINK.subject, condition_uri(registry.condition("treated"))) in graph
        assert (comparison, OMICS.control_condition, condition_uri(registry.condition("control"))) in graph
        assert (comparison, OMICS.issue, Literal("oneConditionMissing")) in graph
        assert sink.counts == {"ProteinAbundance": 2, "ProteinComparisonResult": 1}

    def test_matrix_values(self):
        sink = RdfSink()
        cell_line = CellLineModel("ACH-000001")
        effect = URIRef(sink.store(MatrixValue(Gene("7157"), cell_line, "gene_effect", -0.8)))
        copy_number = URIRef(sink.store(MatrixValue(Gene("7157"), cell_line, "copy_number", 1.1)))
        graph = sink.writer.graph

        assert effect != copy_number
        assert (effect, OMICS.attribute, Literal("gene_effect")) in graph
        assert (effect, OMICS.value, Literal(-0.8, datatype=XSD.double)) in graph
