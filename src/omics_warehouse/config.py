"""Loader configuration."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .resolution.id_resolver import HgncIdResolver, IdResolverPort, MappingFileIdResolver
from .resolution.model import Comparison


@dataclass
class LoaderConfig:
    """Options shared by the directory pipelines and the CLI.

    ``HGNC_CACHE_PATH`` in the environment overrides the default HGNC
    cache location when ``hgnc_cache_path`` is not set.
    """

    species: str = "human"
    hgnc_cache_path: Optional[Path] = None
    mapping_file: Optional[Path] = None  # use a local identifier map instead of HGNC

    # RNA-seq results
    counts_file: str = "salmon.merged.gene_counts.tsv"
    deseq2_suffix: str = "_DESeq2.tsv"

    # Proteomics results
    mztab_file: str = "out.mzTab"
    msstats_file: str = "msstats_comparisons.csv"
    msstats_delimiter: str = "\t"  # MSstats exports are tab-separated despite the suffix

    # DepMap/CCLE matrices
    matrix_attribute: str = "value"
    matrix_header_start: str = ""
    matrix_delimiter: str = ","
    ids_are_primary: bool = False

    output_format: str = "turtle"  # "turtle" or "nt"

    def deseq2_file_name(self, comparison: Comparison) -> str:
        return f"{comparison.label}{self.deseq2_suffix}"

    def create_id_resolver(self) -> IdResolverPort:
        """Build the external identifier resolver these options describe."""
        if self.mapping_file is not None:
            return MappingFileIdResolver(self.mapping_file)
        cache_path = self.hgnc_cache_path
        if cache_path is None and os.environ.get("HGNC_CACHE_PATH"):
            cache_path = Path(os.environ["HGNC_CACHE_PATH"])
        return HgncIdResolver(cache_path=cache_path)
