"""Integration tests for the directory pipelines, using a fake identifier resolver."""

import copy
import json

import pytest

from omics_warehouse.config import LoaderConfig
from omics_warehouse.pipeline import (
    PipelineResult,
    run_matrix_pipeline,
    run_proteomics_pipeline,
    run_rnaseq_pipeline,
)
from omics_warehouse.rdf.sink import MemorySink, RdfSink
from omics_warehouse.resolution.id_resolver import HgncIdResolver, MappingFileIdResolver
from omics_warehouse.resolution.model import (
    CellLineModel,
    Experiment,
    Gene,
    Protein,
    ProteinGroup,
    Sample,
)

from conftest import FakePort

DESEQ2_TSV = (
    "ensembl\tentrez\tsymbol\tbaseMean\tlog2FoldChange\tlfcSE\tstat\tpvalue\tpadj\n"
    "ENSG00000141510\tNA\tTP53\t100\t1.2\t0.3\t4\t0.001\tNA\n"
    "ENSG00000123374\t1017\tCDK2\t50\t-0.5\t0.2\t-2\t0.05\t0.1\n"
)

COUNTS_TSV = (
    "gene_id\tgene_name\tcontrol_R1\ttreated_R1\n"
    "ENSG00000141510.5\tTP53\t10\t0\n"
    "ENSG00000123374\tCDK2\t1\t2\n"
)

MZTAB = (
    "MTD\tms_run[1]-location\tfile:///raw/c1.mzML\n"
    "MTD\tms_run[2]-location\tfile:///raw/t1.mzML\n"
    "PRH\taccession\tambiguity_members\tprotein_abundance_study_variable[1]"
    "\tprotein_abundance_study_variable[2]\n"
    "PRT\tsp|P04637|P53_HUMAN\tnull\t10\t20\n"
    "PRT\tsp|P24941|CDK2_HUMAN\tnull\t5\t0\n"
)

MSSTATS_TSV = (
    "Protein\tLabel\tlog2FC\tSE\tTvalue\tDF\tpvalue\tadj.pvalue\n"
    "sp|P04637|P53_HUMAN\ttreated vs control\t1.0\t0.1\t10\t2\t0.01\t0.02\n"
    "sp|P24941|CDK2_HUMAN\ttreated-control\t-1.0\t0.1\t-10\t2\t0.01\t0.02\n"
)


def _write_experiment(data_dir, document, files):
    short_name = document["experiment"]["short name"]
    (data_dir / f"{short_name}.json").write_text(json.dumps(document))
    experiment_dir = data_dir / short_name
    experiment_dir.mkdir()
    for name, content in files.items():
        (experiment_dir / name).write_text(content)


def _proteomics_document():
    return {
        "experiment": {"short name": "P01"},
        "materials": {"HeLa": {"cell line": {"name": "HeLa"}}},
        "conditions": {
            "control": {"material": "HeLa", "samples": {"s1": {"file": "c1.mzML"}}},
            "treated": {"material": "HeLa", "samples": {"s1": {"file": "t1.mzML"}}},
        },
    }


# ---------------------------------------------------------------------------
# RNA-seq
# ---------------------------------------------------------------------------


class TestRnaseqPipeline:

    @pytest.fixture
    def data_dir(self, tmp_path, study_document):
        _write_experiment(
            tmp_path,
            study_document,
            {
                "treated_vs_control_DESeq2.tsv": DESEQ2_TSV,
                "salmon.merged.gene_counts.tsv": COUNTS_TSV,
            },
        )
        second = copy.deepcopy(study_document)
        second["experiment"]["short name"] = "EXP02"
        _write_experiment(
            tmp_path,
            second,
            {
                "treated_vs_control_DESeq2.tsv": "gene\tpadj\nENSG00000141510\t0.1\n",
                "salmon.merged.gene_counts.tsv": COUNTS_TSV,
            },
        )
        broken = copy.deepcopy(study_document)
        broken["experiment"]["short name"] = "BROKEN"
        del broken["conditions"]["control"]["material"]
        (tmp_path / "broken.json").write_text(json.dumps(broken))
        return tmp_path

    def test_loads_experiments(self, data_dir):
        sink = MemorySink()
        port = FakePort()
        result = run_rnaseq_pipeline(data_dir, sink, port=port)

        assert isinstance(result, PipelineResult)
        assert [e.short_name for e in result.experiments] == ["EXP01", "EXP02"]
        assert result.records == {"differential_expression": 2, "feature_counts": 6}
        assert len(result.reports) == 3

    def test_errors_are_per_file(self, data_dir):
        result = run_rnaseq_pipeline(data_dir, MemorySink(), port=FakePort())
        assert len(result.errors) == 2
        assert result.errors[0].startswith("EXP02/treated_vs_control_DESeq2.tsv: ")
        assert result.errors[1].startswith("broken.json: BROKEN: condition 'control'")
        assert result.get_stats()["errors"] == 2

    def test_failed_document_leaves_no_entities(self, data_dir):
        sink = MemorySink()
        run_rnaseq_pipeline(data_dir, sink, port=FakePort())
        assert [e.short_name for e in sink.of_type(Experiment)] == ["EXP01", "EXP02"]
        assert all(s.experiment.short_name != "BROKEN" for s in sink.of_type(Sample))

    def test_genes_shared_across_experiments(self, data_dir):
        sink = MemorySink()
        port = FakePort()
        result = run_rnaseq_pipeline(data_dir, sink, port=port)

        assert sorted(g.primary_id for g in sink.of_type(Gene)) == ["1017", "7157"]
        assert len(port.calls) == 4
        assert result.gene_stats["port_calls"] == 4
        # 8 records plus 2 genes; metadata entities are stored by the assembler
        assert result.stored == 10

    def test_missing_results_directory(self, tmp_path, metadata_document):
        (tmp_path / "EXP01.json").write_text(json.dumps(metadata_document))
        result = run_rnaseq_pipeline(tmp_path, MemorySink(), port=FakePort())
        assert len(result.experiments) == 1
        assert result.records == {}
        assert result.errors == []

    def test_unsupported_species(self, tmp_path, study_document):
        study_document["experiment"]["species"] = "zebrafish"
        _write_experiment(tmp_path, study_document, {"salmon.merged.gene_counts.tsv": COUNTS_TSV})
        result = run_rnaseq_pipeline(tmp_path, MemorySink(), port=FakePort())
        assert result.errors == [
            "EXP01.json: Unsupported species 'zebrafish'; expected one of human, mouse"
        ]

    def test_rdf_output(self, data_dir, tmp_path):
        sink = RdfSink()
        run_rnaseq_pipeline(data_dir, sink, port=FakePort())
        path = sink.write(tmp_path / "rnaseq.ttl")
        assert path.exists()
        assert sink.counts["FeatureCount"] == 6
        assert sink.counts["Gene"] == 2


# ---------------------------------------------------------------------------
# Proteomics
# ---------------------------------------------------------------------------


class TestProteomicsPipeline:

    @pytest.fixture
    def data_dir(self, tmp_path):
        _write_experiment(
            tmp_path,
            _proteomics_document(),
            {"out.mzTab": MZTAB, "msstats_comparisons.csv": MSSTATS_TSV},
        )
        (tmp_path / "P02").mkdir()
        (tmp_path / "P02" / "out.mzTab").write_text(MZTAB)
        (tmp_path / "notes").mkdir()
        return tmp_path

    def test_loads_abundances_and_comparisons(self, data_dir):
        sink = MemorySink()
        result = run_proteomics_pipeline(data_dir, sink, port=FakePort())

        assert result.errors == []
        assert [e.short_name for e in result.experiments] == ["P01", "P02"]
        assert result.records == {"protein_abundance": 6, "protein_comparison": 2}

    def test_shared_and_extra_entities(self, data_dir):
        sink = MemorySink()
        run_proteomics_pipeline(data_dir, sink, port=FakePort())

        assert len(sink.of_type(Protein)) == 2
        assert len(sink.of_type(ProteinGroup)) == 4
        assert len(sink.of_type(Experiment)) == 2
        # two from the P01 metadata, two created for P02
        samples = sink.of_type(Sample)
        assert len(samples) == 4
        assert [s.experiment.short_name for s in samples[2:]] == ["P02", "P02"]

    def test_bad_mztab_recorded(self, tmp_path):
        (tmp_path / "P03").mkdir()
        (tmp_path / "P03" / "out.mzTab").write_text("PRH\taccession\n")
        result = run_proteomics_pipeline(tmp_path, MemorySink(), port=FakePort())
        assert len(result.errors) == 1
        assert "P03/out.mzTab" in result.errors[0]
        assert "no sample information" in result.errors[0]


# ---------------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------------


class TestMatrixPipeline:

    CSV = (
        "DepMapID,TP53 (ENSG00000141510),CDK2 (ENSG00000123374)\n"
        "ACH-000001,0.5,-1.2\n"
        "ACH-000002,NA,0.3\n"
    )

    def test_loads_matrix(self, tmp_path):
        path = tmp_path / "CRISPRGeneEffect.csv"
        path.write_text(self.CSV)
        config = LoaderConfig(matrix_attribute="gene_effect", matrix_header_start="DepMapID")
        sink = MemorySink()

        result = run_matrix_pipeline(path, sink, config, port=FakePort())

        assert result.errors == []
        assert result.records == {"matrix_values": 3}
        assert len(sink.of_type(CellLineModel)) == 2
        assert len(sink.of_type(Gene)) == 2
        assert result.get_stats()["records_matrix_values"] == 3

    def test_header_mismatch_recorded(self, tmp_path):
        path = tmp_path / "matrix.csv"
        path.write_text(self.CSV)
        sink = MemorySink()
        result = run_matrix_pipeline(path, sink, LoaderConfig(), port=FakePort())
        assert len(result.errors) == 1
        assert "expected first header cell" in result.errors[0]
        assert len(sink) == 0


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestLoaderConfig:

    def test_deseq2_file_name(self, experiment):
        config = LoaderConfig()
        assert config.deseq2_file_name(experiment.comparisons[0]) == "treated_vs_control_DESeq2.tsv"

    def test_mapping_file_resolver(self, tmp_path):
        config = LoaderConfig(mapping_file=tmp_path / "map.tsv")
        assert isinstance(config.create_id_resolver(), MappingFileIdResolver)

    def test_hgnc_resolver_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HGNC_CACHE_PATH", str(tmp_path / "hgnc.tsv"))
        resolver = LoaderConfig().create_id_resolver()
        assert isinstance(resolver, HgncIdResolver)
        assert resolver._cache_path == tmp_path / "hgnc.tsv"
