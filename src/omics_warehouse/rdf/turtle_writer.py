"""rdflib graph wrapper used by ``RdfSink``.

Entities become Biolink-typed nodes.  Measurements (counts, abundances,
fold changes, matrix values) become association nodes carrying the measured
values; an association URI is a hash of the caller's key, so loading the
same files twice yields the same graph instead of duplicate associations.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from rdflib import Graph, Literal, URIRef
from rdflib.namespace import RDF, RDFS, XSD

from .biolink_mapping import (
    get_association_class,
    get_biolink_class,
    get_biolink_predicate,
    get_property_predicate,
    is_reified_relationship,
)
from .config import BIOLINK, NAMESPACES, OMICS, stable_id

# File suffix -> rdflib serialization format
SUFFIX_FORMATS = {
    ".ttl": "turtle",
    ".nt": "nt",
    ".xml": "xml",
    ".jsonld": "json-ld",
}

# Checked in order: bool is a subclass of int
_LITERAL_DATATYPES = (
    (bool, XSD.boolean),
    (int, XSD.integer),
    (float, XSD.double),
)


def format_for_path(path: Union[str, Path]) -> Optional[str]:
    """Serialization format implied by the file suffix, or None if unknown."""
    return SUFFIX_FORMATS.get(Path(path).suffix.lower())


class TurtleWriter:
    """Accumulates nodes and associations in one rdflib ``Graph``.

    Usage::

        writer = TurtleWriter()
        writer.add_node(NCBIGENE["7157"], "Gene", {"id": "NCBIGene:7157"})
        writer.add_relationship(
            condition, "MEASURED_DIFFERENTIAL_EXPRESSION", NCBIGENE["7157"],
            properties={"log2fc": 1.2, "adj_p_value": 0.001},
            key=("EXP01", "treated", "control", "7157"),
        )
        writer.write("rnaseq.ttl")
    """

    def __init__(self) -> None:
        self._graph = Graph()
        for prefix, namespace in NAMESPACES.items():
            self._graph.bind(prefix, namespace)
        for prefix, namespace in (("rdf", RDF), ("rdfs", RDFS), ("xsd", XSD)):
            self._graph.bind(prefix, namespace)

    @property
    def graph(self) -> Graph:
        return self._graph

    def add_node(
        self, uri: URIRef, node_type: str, properties: Optional[Mapping[str, Any]] = None
    ) -> URIRef:
        """Type ``uri`` with the Biolink class for ``node_type`` and attach its properties.

        Properties whose value is None are left out.
        """
        self._graph.add((uri, RDF.type, get_biolink_class(node_type)))
        self._set_properties(uri, properties)
        return uri

    def add_relationship(
        self,
        subject_uri: URIRef,
        relationship_type: str,
        object_uri: URIRef,
        properties: Optional[Mapping[str, Any]] = None,
        key: Optional[Sequence[str]] = None,
    ) -> Optional[URIRef]:
        """Link two nodes.

        Measurement types are reified as an association node (see
        ``add_measurement``); any other type is a single triple and
        ``properties``/``key`` are ignored.

        Returns:
            The association URI for measurements, otherwise None.
        """
        if is_reified_relationship(relationship_type):
            return self.add_measurement(
                subject_uri, relationship_type, object_uri, properties or {}, key
            )
        self._graph.add((subject_uri, get_biolink_predicate(relationship_type), object_uri))
        return None

    def add_measurement(
        self,
        subject_uri: URIRef,
        relationship_type: str,
        object_uri: URIRef,
        properties: Mapping[str, Any],
        key: Optional[Sequence[str]] = None,
    ) -> URIRef:
        """Create (or extend) the association node for one measured value.

        Args:
            subject_uri: What was measured in (condition, sample, cell line)
            relationship_type: One of the ``MEASURED_*`` types
            object_uri: What was measured (gene, protein group)
            properties: Measured values; None values are left out
            key: Parts identifying the measurement; defaults to the subject
                and object URIs

        Returns:
            The association URI, ``omics:association/<hash>``.
        """
        parts = list(key) if key else [str(subject_uri), str(object_uri)]
        association = OMICS[f"association/{stable_id([relationship_type] + parts)}"]

        self._graph.add((association, RDF.type, get_association_class(relationship_type)))
        self._graph.add((association, BIOLINK.subject, subject_uri))
        self._graph.add((association, BIOLINK.predicate, get_biolink_predicate(relationship_type)))
        self._graph.add((association, BIOLINK["object"], object_uri))
        self._set_properties(association, properties)
        return association

    def _set_properties(self, uri: URIRef, properties: Optional[Mapping[str, Any]]) -> None:
        for name, value in (properties or {}).items():
            if value is None:
                continue
            obj = value if isinstance(value, URIRef) else to_literal(value)
            self._graph.add((uri, get_property_predicate(name), obj))

    # -----------------------------------------------------------------
    # Output
    # -----------------------------------------------------------------

    def serialize(self, fmt: str = "turtle") -> str:
        return self._graph.serialize(format=fmt)

    def write(self, path: Union[str, Path], fmt: Optional[str] = None) -> Path:
        """Serialize to ``path``; the format defaults to the one its suffix implies, else Turtle."""
        path = Path(path)
        fmt = fmt or format_for_path(path) or "turtle"
        path.parent.mkdir(parents=True, exist_ok=True)
        self._graph.serialize(destination=str(path), format=fmt)
        return path

    def select(self, sparql: str) -> List[Dict[str, Any]]:
        """Run a SPARQL SELECT; each row is a dict of its bound variables."""
        return [row.asdict() for row in self._graph.query(sparql)]

    def get_triple_count(self) -> int:
        return len(self._graph)


def to_literal(value: Any) -> Literal:
    """Typed literal for numbers and booleans; anything else becomes a plain string."""
    for python_type, datatype in _LITERAL_DATATYPES:
        if isinstance(value, python_type):
            return Literal(value, datatype=datatype)
    return Literal(str(value))
