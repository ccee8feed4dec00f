"""Tests for the click command line interface."""

import json

from click.testing import CliRunner
from rdflib import Graph

from omics_warehouse.cli import cli

MAPPING_TSV = (
    "primary_id\tidentifier\n"
    "7157\tTP53\n"
    "7157\tENSG00000141510\n"
    "1017\tCDK2\n"
    "1017\tENSG00000123374\n"
)

MATRIX_CSV = (
    "DepMapID,TP53 (ENSG00000141510),CDK2 (ENSG00000123374)\n"
    "ACH-000001,0.5,-1.2\n"
)


def _write_mapping(tmp_path):
    path = tmp_path / "mapping.tsv"
    path.write_text(MAPPING_TSV)
    return path


class TestMatrixCommand:

    def test_writes_turtle(self, tmp_path):
        matrix = tmp_path / "CRISPRGeneEffect.csv"
        matrix.write_text(MATRIX_CSV)
        output = tmp_path / "effect.ttl"

        result = CliRunner().invoke(
            cli,
            [
                "matrix",
                str(matrix),
                "--attribute", "gene_effect",
                "--header-start", "DepMapID",
                "--mapping-file", str(_write_mapping(tmp_path)),
                "--output", str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        assert f"Wrote {output}" in result.output
        assert "records_matrix_values: 2" in result.output
        graph = Graph()
        graph.parse(str(output), format="turtle")
        assert len(graph) > 0

    def test_ntriples_format(self, tmp_path):
        matrix = tmp_path / "cn.csv"
        matrix.write_text(MATRIX_CSV)
        output = tmp_path / "cn.nt"

        result = CliRunner().invoke(
            cli,
            [
                "--verbose",
                "matrix",
                str(matrix),
                "--attribute", "copy_number",
                "--header-start", "DepMapID",
                "--mapping-file", str(_write_mapping(tmp_path)),
                "--format", "nt",
                "--output", str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        graph = Graph()
        graph.parse(str(output), format="nt")
        assert len(graph) > 0

    def test_reports_failures(self, tmp_path):
        matrix = tmp_path / "bad.csv"
        matrix.write_text(MATRIX_CSV)

        result = CliRunner().invoke(
            cli,
            [
                "matrix",
                str(matrix),
                "--attribute", "gene_effect",
                "--mapping-file", str(_write_mapping(tmp_path)),
                "--output", str(tmp_path / "bad.ttl"),
            ],
        )

        assert result.exit_code == 0
        assert "1 file(s) failed" in result.output
        assert "expected first header cell" in result.output

    def test_attribute_required(self, tmp_path):
        matrix = tmp_path / "m.csv"
        matrix.write_text(MATRIX_CSV)
        result = CliRunner().invoke(cli, ["matrix", str(matrix)])
        assert result.exit_code != 0
        assert "--attribute" in result.output


class TestRnaseqCommand:

    def test_loads_directory(self, tmp_path, study_document):
        data_dir = tmp_path / "data"
        experiment_dir = data_dir / "EXP01"
        experiment_dir.mkdir(parents=True)
        (data_dir / "EXP01.json").write_text(json.dumps(study_document))
        (experiment_dir / "counts.tsv").write_text(
            "gene_id\tcontrol_R1\ttreated_R1\nENSG00000141510\t3\t4\n"
        )
        output = tmp_path / "rnaseq.ttl"

        result = CliRunner().invoke(
            cli,
            [
                "rnaseq",
                str(data_dir),
                "--counts-file", "counts.tsv",
                "--mapping-file", str(_write_mapping(tmp_path)),
                "--output", str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "experiments: 1" in result.output
        assert "records_feature_counts: 2" in result.output
        assert output.exists()


class TestProteomicsCommand:

    def test_empty_directory(self, tmp_path):
        output = tmp_path / "proteomics.ttl"
        result = CliRunner().invoke(
            cli,
            [
                "proteomics",
                str(tmp_path),
                "--mapping-file", str(_write_mapping(tmp_path)),
                "--output", str(output),
            ],
        )
        assert result.exit_code == 0, result.output
        assert "experiments: 0" in result.output
        assert output.exists()
