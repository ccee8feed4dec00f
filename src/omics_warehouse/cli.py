from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from omics_warehouse.config import LoaderConfig
from omics_warehouse.pipeline import (
    PipelineResult,
    run_matrix_pipeline,
    run_proteomics_pipeline,
    run_rnaseq_pipeline,
)
from omics_warehouse.rdf.config import RdfConfig
from omics_warehouse.rdf.sink import RdfSink

FORMAT_SUFFIXES = {"turtle": ".ttl", "nt": ".nt"}


def _resolver_options(func):
    """Identifier resolution options shared by all commands."""
    func = click.option(
        "--mapping-file",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="TSV with primary_id/identifier columns; replaces the HGNC download.",
    )(func)
    func = click.option(
        "--hgnc-cache",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="HGNC cache file (default: $HGNC_CACHE_PATH or ~/.omics_warehouse/).",
    )(func)
    func = click.option(
        "--format",
        "output_format",
        type=click.Choice(sorted(FORMAT_SUFFIXES)),
        default="turtle",
        show_default=True,
        help="RDF serialization format.",
    )(func)
    return func


def _write_output(sink: RdfSink, output: Path, result: PipelineResult) -> None:
    sink.write(output, fmt=sink.config.output_format)
    stats = result.get_stats()
    click.echo(f"Wrote {output} ({sink.writer.get_triple_count():,} triples)")
    for key, count in sorted(stats.items()):
        click.echo(f"  {key}: {count}")
    if result.errors:
        click.echo(f"{len(result.errors)} file(s) failed:", err=True)
        for error in result.errors:
            click.echo(f"  - {error}", err=True)


def _default_output(output: Optional[Path], stem: str, output_format: str) -> Path:
    return output or Path(f"{stem}{FORMAT_SUFFIXES[output_format]}")


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Load omics results files into an RDF data warehouse."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@cli.command("rnaseq")
@click.argument(
    "data_dir",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output RDF file (default: rnaseq.ttl).",
)
@click.option(
    "--counts-file",
    default=LoaderConfig.counts_file,
    show_default=True,
    help="Name of the gene counts matrix in each experiment directory.",
)
@_resolver_options
def rnaseq_command(
    data_dir: Path,
    output: Optional[Path],
    counts_file: str,
    output_format: str,
    hgnc_cache: Optional[Path],
    mapping_file: Optional[Path],
) -> None:
    """Load RNA-seq experiments (metadata JSON, DESeq2 tables, gene counts)."""
    config = LoaderConfig(
        hgnc_cache_path=hgnc_cache,
        mapping_file=mapping_file,
        counts_file=counts_file,
        output_format=output_format,
    )
    sink = RdfSink(config=RdfConfig(output_format=output_format))
    result = run_rnaseq_pipeline(data_dir, sink, config)
    _write_output(sink, _default_output(output, "rnaseq", output_format), result)


@cli.command("proteomics")
@click.argument(
    "data_dir",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output RDF file (default: proteomics.ttl).",
)
@click.option(
    "--species",
    default="human",
    show_default=True,
    help="Species for experiments without metadata.",
)
@_resolver_options
def proteomics_command(
    data_dir: Path,
    output: Optional[Path],
    species: str,
    output_format: str,
    hgnc_cache: Optional[Path],
    mapping_file: Optional[Path],
) -> None:
    """Load proteomics experiments (mzTab abundances, MSstats comparisons)."""
    config = LoaderConfig(
        species=species,
        hgnc_cache_path=hgnc_cache,
        mapping_file=mapping_file,
        output_format=output_format,
    )
    sink = RdfSink(config=RdfConfig(output_format=output_format))
    result = run_proteomics_pipeline(data_dir, sink, config)
    _write_output(sink, _default_output(output, "proteomics", output_format), result)


@cli.command("matrix")
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--attribute",
    required=True,
    help="Name of the value attribute, e.g. gene_effect or copy_number.",
)
@click.option(
    "--header-start",
    default="",
    show_default=True,
    help="Expected first header cell (row name column).",
)
@click.option(
    "--ids-are-primary",
    is_flag=True,
    help="Gene columns carry NCBI IDs ('SYMBOL (1234)') instead of Ensembl IDs.",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output RDF file (default: <input name>.ttl).",
)
@_resolver_options
def matrix_command(
    input_file: Path,
    attribute: str,
    header_start: str,
    ids_are_primary: bool,
    output: Optional[Path],
    output_format: str,
    hgnc_cache: Optional[Path],
    mapping_file: Optional[Path],
) -> None:
    """Load a DepMap/CCLE cell line x gene matrix."""
    config = LoaderConfig(
        hgnc_cache_path=hgnc_cache,
        mapping_file=mapping_file,
        matrix_attribute=attribute,
        matrix_header_start=header_start,
        ids_are_primary=ids_are_primary,
        output_format=output_format,
    )
    sink = RdfSink(config=RdfConfig(output_format=output_format))
    result = run_matrix_pipeline(input_file, sink, config)
    _write_output(sink, _default_output(output, input_file.stem, output_format), result)


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
