"""Biolink-based RDF persistence for warehouse entities and records."""

from omics_warehouse.rdf.config import RdfConfig
from omics_warehouse.rdf.sink import ItemSink, MemorySink, RdfSink
from omics_warehouse.rdf.turtle_writer import TurtleWriter

__all__ = [
    "RdfConfig",
    "ItemSink",
    "MemorySink",
    "RdfSink",
    "TurtleWriter",
]
