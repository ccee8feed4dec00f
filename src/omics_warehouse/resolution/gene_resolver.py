"""Resolve ambiguous gene identifiers to one canonical Gene.

Results files identify genes by any mix of an NCBI/Entrez primary ID, an
Ensembl (secondary) ID and a symbol, often with version suffixes and ``NA``
placeholders.  ``GeneIdentityResolver`` turns such a triple into at most one
``Gene`` per canonical primary ID for the whole run:

* a valid primary ID short-circuits to the entity cache;
* otherwise each valid identifier is sent to the external resolver and the
  candidate sets are intersected;
* the outcome (including failures) is memoized per resolution key.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from .entity_cache import EntityCache
from .id_resolver import GENE_KIND, IdResolverPort
from .model import HUMAN_TAXON_ID, MOUSE_TAXON_ID, Gene

logger = logging.getLogger(__name__)

SPECIES_TAXON_IDS = {
    "human": HUMAN_TAXON_ID,
    "mouse": MOUSE_TAXON_ID,
}

MISSING_VALUE = "NA"

ResolutionKey = Tuple[Optional[str], Optional[str]]


def taxon_for_species(species: str) -> str:
    """Map a species name to its NCBI taxonomy ID.

    Raises:
        ValueError: If the species is not supported.
    """
    try:
        return SPECIES_TAXON_IDS[species.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported species {species!r}; expected one of {', '.join(SPECIES_TAXON_IDS)}"
        ) from None


def is_valid_identifier(value: Optional[str]) -> bool:
    """An identifier is usable unless it is missing, empty or ``NA``."""
    return value is not None and value.strip() != "" and value.strip() != MISSING_VALUE


def strip_version(identifier: str) -> str:
    """Drop a trailing ``.N`` version suffix (``ENSG00000141510.17`` -> ``ENSG00000141510``)."""
    return identifier.strip().split(".", 1)[0]


def _normalize(value: Optional[str]) -> Optional[str]:
    if not is_valid_identifier(value):
        return None
    stripped = strip_version(value)
    return stripped or None


@dataclass
class ResolutionStats:
    """Counters for one resolver over a run."""

    resolved: int = 0
    unresolved: int = 0
    memo_hits: int = 0
    port_calls: int = 0
    conflicts: int = 0
    ambiguous: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "resolved": self.resolved,
            "unresolved": self.unresolved,
            "memo_hits": self.memo_hits,
            "port_calls": self.port_calls,
            "conflicts": self.conflicts,
            "ambiguous": self.ambiguous,
        }


class GeneIdentityResolver:
    """Run-scoped gene resolution with memoization.

    Args:
        port: External identifier resolver
        species: ``"human"`` or ``"mouse"``
        genes: Entity cache shared by the run (a fresh one by default)
        memo: Resolution-key memo shared by the run (a fresh one by default)
    """

    def __init__(
        self,
        port: IdResolverPort,
        species: str = "human",
        genes: Optional[EntityCache] = None,
        memo: Optional[Dict[ResolutionKey, Optional[Gene]]] = None,
    ) -> None:
        self.port = port
        self.species = species.strip().lower()
        self.taxon_id = taxon_for_species(self.species)
        self._genes: EntityCache = genes if genes is not None else EntityCache("gene")
        self._memo: Dict[ResolutionKey, Optional[Gene]] = memo if memo is not None else {}
        self._candidates: Dict[str, FrozenSet[str]] = {}
        self.stats = ResolutionStats()

    @property
    def genes(self) -> EntityCache:
        return self._genes

    def resolve(
        self,
        primary_id: Optional[str] = None,
        secondary_id: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> Optional[Gene]:
        """Resolve an identifier triple to a canonical Gene.

        Args:
            primary_id: NCBI/Entrez gene ID; used as-is when valid
            secondary_id: Ensembl gene ID (version suffix allowed)
            symbol: Gene symbol

        Returns:
            The Gene, or None if nothing or more than one gene matched.
        """
        if is_valid_identifier(primary_id):
            self.stats.resolved += 1
            return self._gene(primary_id.strip())

        key: ResolutionKey = (_normalize(secondary_id), _normalize(symbol))
        if key == (None, None):
            self.stats.unresolved += 1
            return None

        if key in self._memo:
            self.stats.memo_hits += 1
            return self._memo[key]

        gene = self._resolve_key(key)
        self._memo[key] = gene
        if gene is None:
            self.stats.unresolved += 1
        else:
            self.stats.resolved += 1
        return gene

    def is_primary_identifier(self, identifier: Optional[str]) -> bool:
        """True if the external resolver knows ``identifier`` as a primary ID."""
        if not is_valid_identifier(identifier):
            return False
        value = identifier.strip()
        return value in self._lookup(value)

    def is_ambiguous(self, identifier: Optional[str]) -> bool:
        """True if ``identifier`` alone matches more than one gene."""
        value = _normalize(identifier)
        return value is not None and len(self._lookup(value)) > 1

    def symbol_candidates(self, symbol: Optional[str]) -> FrozenSet[str]:
        """Primary IDs the symbol may refer to (empty for invalid symbols)."""
        value = _normalize(symbol)
        return self._lookup(value) if value is not None else frozenset()

    def corroborates(self, gene: Gene, symbol: Optional[str]) -> bool:
        """True if ``symbol`` is one of the names of ``gene``."""
        return gene.primary_id in self.symbol_candidates(symbol)

    def flush(self, sink) -> int:
        """Store every gene not stored yet; returns the number stored."""
        stored = 0
        for key, gene in self._genes.unstored():
            sink.store(gene)
            self._genes.mark_stored(key)
            stored += 1
        logger.info("Stored %d genes (%d in cache)", stored, len(self._genes))
        return stored

    def clear(self) -> None:
        """Reset the entity cache, the memo and the statistics."""
        self._genes.clear()
        self._memo.clear()
        self._candidates.clear()
        self.stats = ResolutionStats()

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _gene(self, primary_id: str) -> Gene:
        return self._genes.get_or_create(
            primary_id, lambda: Gene(primary_id=primary_id, taxon_id=self.taxon_id)
        )

    def _lookup(self, identifier: str) -> FrozenSet[str]:
        candidates = self._candidates.get(identifier)
        if candidates is None:
            self.stats.port_calls += 1
            candidates = frozenset(
                self.port.resolve_candidates(self.taxon_id, GENE_KIND, identifier)
            )
            self._candidates[identifier] = candidates
        return candidates

    def _resolve_key(self, key: ResolutionKey) -> Optional[Gene]:
        secondary_id, symbol = key
        description = _describe(secondary_id, symbol)

        found = [self._lookup(value) for value in key if value is not None]
        non_empty = [candidates for candidates in found if candidates]

        if not non_empty:
            logger.warning("No gene found for %s", description)
            return None

        combined = frozenset.intersection(*non_empty)
        if not combined:
            self.stats.conflicts += 1
            logger.warning("No common gene match for %s", description)
            return None
        if len(combined) > 1:
            self.stats.ambiguous += 1
            logger.warning(
                "Multiple/conflicting gene matches for %s: %s",
                description,
                ", ".join(sorted(combined)),
            )
            return None

        (primary_id,) = combined
        return self._gene(primary_id)


def _describe(secondary_id: Optional[str], symbol: Optional[str]) -> str:
    parts = []
    if secondary_id:
        parts.append(f"id {secondary_id}")
    if symbol:
        parts.append(f"symbol {symbol}")
    return " / ".join(parts)
