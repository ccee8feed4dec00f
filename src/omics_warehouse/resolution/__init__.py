"""Gene, condition and sample identity resolution.

Usage::

    from omics_warehouse.resolution import (
        ExperimentMetadataAssembler,
        GeneIdentityResolver,
        HgncIdResolver,
        TabularReconciler,
        load_metadata,
    )

    experiment = ExperimentMetadataAssembler().assemble(load_metadata("EXP01.json"))
    genes = GeneIdentityResolver(HgncIdResolver(), species=experiment.species)
    reconciler = TabularReconciler(genes, experiment=experiment)
    records = reconciler.reconcile_deseq2(header, rows, experiment.comparisons[0])
"""

from omics_warehouse.resolution.entity_cache import EntityCache
from omics_warehouse.resolution.gene_resolver import GeneIdentityResolver, ResolutionStats
from omics_warehouse.resolution.id_resolver import (
    HgncIdResolver,
    IdResolverPort,
    MappingFileIdResolver,
)
from omics_warehouse.resolution.metadata import ExperimentMetadataAssembler, load_metadata
from omics_warehouse.resolution.reconciler import ReconcileReport, TabularReconciler
from omics_warehouse.resolution.registry import NamedEntityRegistry

__all__ = [
    "EntityCache",
    "GeneIdentityResolver",
    "ResolutionStats",
    "IdResolverPort",
    "HgncIdResolver",
    "MappingFileIdResolver",
    "ExperimentMetadataAssembler",
    "load_metadata",
    "NamedEntityRegistry",
    "ReconcileReport",
    "TabularReconciler",
]
