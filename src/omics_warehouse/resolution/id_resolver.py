"""External identifier resolvers.

An ``IdResolverPort`` answers one question: which canonical primary gene
identifiers (NCBI/Entrez IDs) could this free-text identifier refer to?
More than one answer signals ambiguity, none means "not found".

Two implementations are provided:

* ``HgncIdResolver`` downloads the HGNC complete gene set on first use and
  caches a compact identifier index locally (human only).
* ``MappingFileIdResolver`` reads a local two-column TSV, for any species.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from io import StringIO
from pathlib import Path
from typing import Dict, Optional, Set

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import ResolverUnavailableError
from .model import HUMAN_TAXON_ID

logger = logging.getLogger(__name__)

# HGNC complete set download URL (TSV)
HGNC_DOWNLOAD_URL = (
    "https://storage.googleapis.com/public-download-files/hgnc/tsv/tsv/hgnc_complete_set.txt"
)

DEFAULT_CACHE_DIR = Path.home() / ".omics_warehouse"
DEFAULT_CACHE_FILE = DEFAULT_CACHE_DIR / "hgnc_identifier_index.tsv"

# Cache expiry: 30 days in seconds
CACHE_MAX_AGE_SECONDS = 30 * 24 * 60 * 60

GENE_KIND = "gene"

# Index tiers: "primary" entries (NCBI IDs, Ensembl IDs, approved symbols)
# shadow "synonym" entries (previous and alias symbols).
PRIMARY_TIER = "primary"
SYNONYM_TIER = "synonym"


class IdResolverPort(ABC):
    """Resolves identifiers to candidate primary identifiers."""

    @abstractmethod
    def resolve_candidates(self, taxon_id: str, entity_kind: str, identifier: str) -> Set[str]:
        """Return all primary identifiers ``identifier`` may refer to.

        Args:
            taxon_id: NCBI taxonomy ID (e.g. ``"9606"``)
            entity_kind: Kind of entity; only ``"gene"`` is supported
            identifier: Ensembl ID, NCBI ID, symbol or other synonym

        Returns:
            Set of primary identifiers; empty if nothing matches.
        """
        raise NotImplementedError("derived classes must implement resolve_candidates")


def create_session(
    max_retries: int = 3,
    backoff_factor: float = 0.5,
    status_forcelist: tuple = (429, 500, 502, 503, 504),
    user_agent: str = "omics-warehouse/0.1",
) -> requests.Session:
    """Create a requests Session with retry logic and standard headers."""
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=("GET",),
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": user_agent})
    return session


class _IndexedResolver(IdResolverPort):
    """Shared lookup over a two-tier identifier index."""

    taxon_id: Optional[str] = None

    def __init__(self) -> None:
        self._primary: Optional[Dict[str, Set[str]]] = None
        self._synonyms: Optional[Dict[str, Set[str]]] = None

    def resolve_candidates(self, taxon_id: str, entity_kind: str, identifier: str) -> Set[str]:
        if entity_kind != GENE_KIND:
            return set()
        if self.taxon_id is not None and taxon_id != self.taxon_id:
            raise ResolverUnavailableError(
                f"{self.__class__.__name__} only covers taxon {self.taxon_id}, not {taxon_id}"
            )
        if self._primary is None:
            self._primary, self._synonyms = self._load_index()
        key = self._normalize(identifier)
        found = self._primary.get(key)
        if found:
            return set(found)
        return set(self._synonyms.get(key, ()))

    @staticmethod
    def _normalize(identifier: str) -> str:
        return identifier.strip()

    @abstractmethod
    def _load_index(self):
        raise NotImplementedError


def _add(index: Dict[str, Set[str]], key: str, primary_id: str) -> None:
    if key:
        index.setdefault(key, set()).add(primary_id)


class HgncIdResolver(_IndexedResolver):
    """Resolves human gene identifiers using a locally cached HGNC index.

    The HGNC complete set is downloaded on first use and reduced to an
    ``identifier -> NCBI Gene ID`` table that is cached as TSV.  The cache is
    refreshed if it is older than 30 days; a stale cache is used when the
    download fails.  Symbols are matched case-insensitively.

    Args:
        cache_path: Path to the cache file. Defaults to
            ``~/.omics_warehouse/hgnc_identifier_index.tsv``, overridable via
            the ``HGNC_CACHE_PATH`` environment variable.
        session: Optional requests session (a retrying one is created).
    """

    taxon_id = HUMAN_TAXON_ID

    def __init__(
        self,
        cache_path: Optional[Path] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__()
        if cache_path is not None:
            self._cache_path = Path(cache_path)
        else:
            env_path = os.environ.get("HGNC_CACHE_PATH")
            self._cache_path = Path(env_path) if env_path else DEFAULT_CACHE_FILE
        self._session = session

    @staticmethod
    def _normalize(identifier: str) -> str:
        return identifier.strip().upper()

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _load_index(self):
        if self._cache_is_valid():
            logger.info("Loading HGNC identifier index from cache: %s", self._cache_path)
            return self._read_cache()

        logger.info("Downloading HGNC complete gene set...")
        try:
            index = self._download_and_parse()
        except (requests.RequestException, OSError, ValueError, KeyError) as exc:
            if self._cache_path.exists():
                logger.warning("Failed to download HGNC data (%s); falling back to stale cache", exc)
                return self._read_cache()
            raise ResolverUnavailableError(f"HGNC gene set unavailable: {exc}") from exc

        self._write_cache(*index)
        logger.info(
            "Cached %d HGNC identifiers to %s",
            len(index[0]) + len(index[1]),
            self._cache_path,
        )
        return index

    def _cache_is_valid(self) -> bool:
        if not self._cache_path.exists():
            return False
        age = time.time() - self._cache_path.stat().st_mtime
        return age < CACHE_MAX_AGE_SECONDS

    def _download_and_parse(self):
        session = self._session or create_session()
        response = session.get(HGNC_DOWNLOAD_URL, timeout=120)
        response.raise_for_status()
        return parse_hgnc_table(response.text)

    def _read_cache(self):
        df = pd.read_csv(self._cache_path, sep="\t", dtype=str, keep_default_na=False)
        primary: Dict[str, Set[str]] = {}
        synonyms: Dict[str, Set[str]] = {}
        for identifier, ncbi_id, tier in df[["identifier", "ncbi_gene_id", "tier"]].itertuples(
            index=False
        ):
            _add(primary if tier == PRIMARY_TIER else synonyms, identifier, ncbi_id)
        return primary, synonyms

    def _write_cache(self, primary: Dict[str, Set[str]], synonyms: Dict[str, Set[str]]) -> None:
        rows = [
            (identifier, ncbi_id, tier)
            for tier, index in ((PRIMARY_TIER, primary), (SYNONYM_TIER, synonyms))
            for identifier, ncbi_ids in sorted(index.items())
            for ncbi_id in sorted(ncbi_ids)
        ]
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(rows, columns=["identifier", "ncbi_gene_id", "tier"]).to_csv(
            self._cache_path, sep="\t", index=False
        )


def parse_hgnc_table(text: str):
    """Build the two-tier identifier index from an HGNC complete set TSV.

    Returns:
        ``(primary, synonyms)`` dicts mapping upper-cased identifiers to sets
        of NCBI Gene IDs.
    """
    df = pd.read_csv(StringIO(text), sep="\t", dtype=str, keep_default_na=False)
    primary: Dict[str, Set[str]] = {}
    synonyms: Dict[str, Set[str]] = {}

    for row in df.to_dict("records"):
        entrez_id = (row.get("entrez_id") or "").strip()
        if not entrez_id:
            continue
        _add(primary, entrez_id, entrez_id)
        _add(primary, (row.get("ensembl_gene_id") or "").strip().upper(), entrez_id)
        _add(primary, (row.get("symbol") or "").strip().upper(), entrez_id)

        # previous and alias symbols are pipe-separated, sometimes quoted
        for column in ("prev_symbol", "alias_symbol"):
            for value in (row.get(column) or "").split("|"):
                _add(synonyms, value.strip().strip('"').upper(), entrez_id)

    return primary, synonyms


class MappingFileIdResolver(_IndexedResolver):
    """Resolves identifiers from a local TSV mapping file.

    The file needs ``primary_id`` and ``identifier`` columns (one row per
    synonym).  Every primary ID also resolves to itself.  Matching is exact.

    Args:
        path: Mapping file location
        taxon_id: Restrict the resolver to this taxon (``None`` = any)
    """

    def __init__(self, path: Path, taxon_id: Optional[str] = None) -> None:
        super().__init__()
        self._path = Path(path)
        self.taxon_id = taxon_id

    def _load_index(self):
        if not self._path.exists():
            raise ResolverUnavailableError(f"Identifier mapping file not found: {self._path}")
        df = pd.read_csv(self._path, sep="\t", dtype=str, keep_default_na=False)
        missing = {"primary_id", "identifier"} - set(df.columns)
        if missing:
            raise ResolverUnavailableError(
                f"Identifier mapping file {self._path} lacks columns: {', '.join(sorted(missing))}"
            )
        primary: Dict[str, Set[str]] = {}
        for primary_id, identifier in df[["primary_id", "identifier"]].itertuples(index=False):
            _add(primary, primary_id.strip(), primary_id.strip())
            _add(primary, identifier.strip(), primary_id.strip())
        logger.info("Loaded %d identifiers from %s", len(primary), self._path)
        return primary, {}
