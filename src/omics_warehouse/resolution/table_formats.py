"""Declarative header layouts for the supported results tables.

Each ``TableFormat`` lists the header layouts seen over time, most recent
first.  A layout is an ordered list of ``ColumnSpec`` entries, optionally
followed by any number of data columns (sample or bio-replicate names in
count matrices).  Matching a header against a format yields a ``ColumnMap``
from logical column role to column index, so per-row code never compares
column names.

Column names compare case-sensitively; the aliases of a column compare
case-insensitively.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import TableFormatError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSpec:
    """One expected column: its header name, logical role and aliases."""

    name: str
    role: Optional[str] = None  # None: expected but not used
    aliases: Tuple[str, ...] = ()

    def matches(self, column: str) -> bool:
        column = column.strip()
        if column == self.name:
            return True
        return column.lower() in (alias.lower() for alias in self.aliases)


@dataclass
class ColumnMap:
    """Result of matching a header against a layout."""

    layout: str
    roles: Dict[str, int]
    data_columns: List[Tuple[int, str]] = field(default_factory=list)

    def index(self, role: str) -> Optional[int]:
        return self.roles.get(role)

    def value(self, row: Sequence[str], role: str) -> Optional[str]:
        """Cell of ``row`` for ``role``; None if the layout lacks the role."""
        index = self.index(role)
        if index is None or index >= len(row):
            return None
        return row[index]


@dataclass(frozen=True)
class TableLayout:
    """An ordered list of expected columns.

    With ``data_columns=True`` the fixed columns are followed by one or more
    free-named data columns.
    """

    name: str
    columns: Tuple[ColumnSpec, ...]
    data_columns: bool = False

    def match(self, header: Sequence[str]) -> Optional[ColumnMap]:
        fixed = len(self.columns)
        if self.data_columns:
            if len(header) <= fixed:
                return None
        elif len(header) != fixed:
            return None

        for spec, column in zip(self.columns, header):
            if not spec.matches(column):
                return None

        roles = {spec.role: i for i, spec in enumerate(self.columns) if spec.role}
        data = [(i, header[i].strip()) for i in range(fixed, len(header))]
        return ColumnMap(layout=self.name, roles=roles, data_columns=data)


@dataclass(frozen=True)
class TableFormat:
    """A table type with its known header layouts (tried in order)."""

    name: str
    layouts: Tuple[TableLayout, ...]

    def detect(self, header: Sequence[str], source: str = "") -> ColumnMap:
        """Match ``header`` against the known layouts.

        Raises:
            TableFormatError: If no layout matches.
        """
        for layout in self.layouts:
            column_map = layout.match(header)
            if column_map is not None:
                logger.debug("%s: detected %s layout %r", source or self.name, self.name, layout.name)
                return column_map
        raise TableFormatError(
            f"unrecognized {self.name} header ({len(header)} columns: {', '.join(header)})",
            source,
        )


def _stats_columns(*names: str) -> Tuple[ColumnSpec, ...]:
    return tuple(ColumnSpec(name, name) for name in names)


# =============================================================================
# Known formats
# =============================================================================

DESEQ2_ROLES = ("baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj")

DESEQ2 = TableFormat(
    name="DESeq2",
    layouts=(
        TableLayout(
            name="current",
            columns=(
                ColumnSpec("Ensembl", "gene"),
                ColumnSpec("Entrez", "entrez"),
                ColumnSpec("Gene", "symbol", aliases=("symbol",)),
                ColumnSpec("Description"),
            )
            + _stats_columns(*DESEQ2_ROLES),
        ),
        TableLayout(
            name="legacy",
            columns=(
                ColumnSpec("ensembl", "gene"),
                ColumnSpec("entrez", "entrez"),
                ColumnSpec("symbol", "symbol", aliases=("Gene",)),
            )
            + _stats_columns(*DESEQ2_ROLES),
        ),
    ),
)

FEATURE_COUNTS = TableFormat(
    name="feature counts",
    layouts=(
        TableLayout(
            name="with_symbol",
            columns=(ColumnSpec("gene_id", "gene"), ColumnSpec("gene_name", "symbol")),
            data_columns=True,
        ),
        TableLayout(
            name="without_symbol",
            columns=(ColumnSpec("gene_id", "gene"),),
            data_columns=True,
        ),
    ),
)

MSSTATS_ROLES = ("log2FC", "SE", "Tvalue", "DF", "pvalue", "adj.pvalue")

MSSTATS = TableFormat(
    name="MSstats",
    layouts=(
        TableLayout(
            name="current",
            columns=(ColumnSpec("Protein", "protein"), ColumnSpec("Label", "label"))
            + _stats_columns(*MSSTATS_ROLES)
            + _stats_columns("issue", "MissingPercentage", "ImputationPercentage"),
        ),
        TableLayout(
            name="legacy",
            columns=(ColumnSpec("Protein", "protein"), ColumnSpec("Label", "label"))
            + _stats_columns(*MSSTATS_ROLES),
        ),
    ),
)

FORMATS = {fmt.name: fmt for fmt in (DESEQ2, FEATURE_COUNTS, MSSTATS)}


def get_format(name: str) -> TableFormat:
    try:
        return FORMATS[name]
    except KeyError:
        raise ValueError(f"Unknown table format: {name}") from None
