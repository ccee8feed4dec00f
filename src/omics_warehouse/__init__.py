"""Identity resolution and loaders for an omics data warehouse.

Reads experiment metadata and results tables (DESeq2, gene counts, mzTab,
MSstats, DepMap/CCLE matrices), resolves genes, conditions and samples to
canonical entities and stores them as Biolink RDF.
"""

__version__ = "0.1.0"
