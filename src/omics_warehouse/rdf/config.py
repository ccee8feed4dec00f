"""RDF namespace definitions and URI helpers for warehouse export."""

import hashlib
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from rdflib import Namespace, URIRef

# =============================================================================
# Namespace definitions
# =============================================================================

# Core project namespace
OMICS = Namespace("https://omics-warehouse.org/")

# Biolink Model
BIOLINK = Namespace("https://w3id.org/biolink/vocab/")

# Gene / protein / cell line identifiers
NCBIGENE = Namespace("https://www.ncbi.nlm.nih.gov/gene/")
ENSEMBL = Namespace("https://identifiers.org/ensembl:")
UNIPROT = Namespace("https://www.uniprot.org/uniprot/")
DEPMAP = Namespace("https://depmap.org/portal/cell_line/")

# Ontologies
NCBITAXON = Namespace("http://purl.obolibrary.org/obo/NCBITaxon_")

# All namespaces for graph binding
NAMESPACES: Dict[str, Namespace] = {
    "omics": OMICS,
    "biolink": BIOLINK,
    "ncbigene": NCBIGENE,
    "ensembl": ENSEMBL,
    "uniprot": UNIPROT,
    "depmap": DEPMAP,
    "NCBITaxon": NCBITAXON,
}


@dataclass
class RdfConfig:
    """Configuration for RDF export."""

    output_format: str = "turtle"  # used when the output suffix implies no format


# =============================================================================
# URI utilities
# =============================================================================

# Characters that are invalid in URI path segments
_INVALID_URI_CHARS = re.compile(r"[^a-zA-Z0-9._~:@!$&'()*+,;=/-]")


def sanitize_uri_identifier(identifier: str) -> str:
    """Sanitize a string for use as a URI path segment.

    Replaces spaces with underscores and removes other invalid characters.
    """
    result = identifier.strip()
    result = result.replace(" ", "_")
    result = _INVALID_URI_CHARS.sub("", result)
    return result


def create_node_uri(
    node_type: str, *identifiers: str, base_ns: Optional[Namespace] = None
) -> URIRef:
    """Create a URI for a typed node.

    Args:
        node_type: The type of node (e.g., "experiment", "condition")
        identifiers: Path segments identifying the node, outermost first
        base_ns: Base namespace (defaults to OMICS)

    Returns:
        URIRef like ``omics:condition/EXP01/control``
    """
    ns = base_ns or OMICS
    path = "/".join(sanitize_uri_identifier(identifier) for identifier in identifiers)
    return URIRef(f"{ns}{node_type}/{path}")


def stable_id(parts: Iterable[str], length: int = 16) -> str:
    """Short hex digest of ``parts``; the same parts always give the same ID."""
    digest = hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()
    return digest[:length]
